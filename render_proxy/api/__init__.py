"""
API sub-package for the Render Proxy.

This package contains the FastAPI application, its route modules and the
Pydantic response models. Import `render_proxy.api.main:app` to serve it.
"""

__all__ = []
