"""
API Module
==========

FastAPI application and routes.

Components:
- main: application factory, lifespan, middleware and exception handlers
- routes: image, font, diagnostics and health endpoints
"""
