"""
Compatibility Module
====================

Decides which engines are usable on a deployment target.

Components:
- presets: static table of known deployment targets and their constraints
- probes: local environment checks (importable packages, native libs, chromium)
- resolver: pure resolution of presets + probes + overrides into a matrix
"""
