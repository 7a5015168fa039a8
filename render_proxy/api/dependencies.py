"""
FastAPI dependency providers.
"""
from fastapi import Request

from render_proxy.core.manager import RenderingManager


def get_rendering_manager(request: Request) -> RenderingManager:
    """Returns the process-wide RenderingManager created by the application lifespan."""
    return request.app.state.rendering_manager
