"""
Fonts Module
============

Components:
- resolver: normalize font inputs into a per-request font manifest
- loader: resolve font binaries from local paths, embedded assets or remote fetch
"""
