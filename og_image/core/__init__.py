"""
Core Business Logic
==================

Render pipeline and compatibility-aware rendering engine.

Modules:
- bindings: process-wide engine registry with single-flight initialization
- compat: deployment presets, environment probes and the compatibility matrix
- fonts: font normalization and font binary loading
- templates: SVG template registry with content hashing
- rendering: renderer dispatcher, engines and raster pipeline
- cache: fingerprinting, cache stores and the single-flight cache manager
"""
