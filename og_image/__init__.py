"""
OG Image Render Service
=======================

On-demand social preview ("link card") image generation for web pages.

This package provides:
- Compatibility-aware selection of rendering engines per deployment target
- Jinja2 SVG templates rasterized with cairosvg and transcoded with Pillow
- Browser screenshot rendering with Playwright
- Fingerprinted, single-flight render caching (memory, filesystem, Redis)
- FastAPI endpoints for images, fonts and diagnostics
"""

__version__ = "1.0.0"
__author__ = "OG Image Team"
