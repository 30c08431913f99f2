"""
Engine Bindings
===============

Process-wide registry of heavy rendering/encoding engines.

Components:
- registry: lazy, single-flight engine initialization and handle ownership
"""
