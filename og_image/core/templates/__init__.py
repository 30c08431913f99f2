"""
Templates Module
================

Components:
- registry: SVG template lookup with content hashing for cache invalidation
"""
