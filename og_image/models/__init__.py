"""
Data Models
===========

Pydantic data models for request/response validation and internal data structures.

Models:
- schemas: render options, compatibility matrix, fonts, render context, cache entries
"""
