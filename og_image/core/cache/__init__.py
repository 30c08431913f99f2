"""
Cache Module
============

Components:
- fingerprint: deterministic cache keys and the cache namespace version
- stores: memory, filesystem and Redis entry stores
- manager: single-flight get-or-render front door
"""
