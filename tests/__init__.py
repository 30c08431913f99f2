"""
Test Suite
==========

Test suite matching the og_image/ package structure.

Test Categories:
- unit: Unit tests for individual components
- integration: HTTP application tests
"""
