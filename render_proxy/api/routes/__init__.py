"""
API Routes sub-package for the Render Proxy.

The status router is registered before the render router so that `/status`
and `/favicon.ico` are not taken for action paths.
"""

from .status_routes import router as status_router
from .render_routes import router as render_router

__all__ = [
    "status_router",
    "render_router",
]
