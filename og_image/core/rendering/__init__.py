"""
Rendering Module
===============

Markup-to-vector rendering, rasterization and browser screenshots.

Components:
- engines: engine implementations and their binding loaders
- raster: vector rasterization and bitmap transcoding with format downgrade
- dispatcher: per-request strategy selection with one-shot fallback
- options: route rules and per-page option overrides
- service: cache-fronted render entry point
"""
