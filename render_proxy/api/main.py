"""
Main application file for the Render Proxy API.

This file initializes the FastAPI application, sets up logging, owns the
lifetime of the shared RenderingManager (and with it the browser and the
session cache), registers global exception handlers and includes the routers.
"""
import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from render_proxy import __version__
from render_proxy.api.routes import render_routes, status_routes
from render_proxy.core.config import config_manager
from render_proxy.core.exceptions import RenderProxyError
from render_proxy.core.logger import setup_logging, get_logger
from render_proxy.core.manager import RenderingManager

# --- Logging Setup ---
# Initialize centralized logging as early as possible when the application starts.
try:
    setup_logging(config_manager)
    logger = get_logger(__name__)
    logger.info("Logging successfully initialized for FastAPI application.")
except Exception as e:
    import logging as py_logging
    py_logging.basicConfig(level=py_logging.WARNING, format="%(asctime)s - %(levelname)s - CRITICAL - Failed to setup custom logging: %(message)s")
    py_logging.critical(f"Failed to initialize custom logging via ConfigurationManager: {e}", exc_info=True)
    logger = py_logging.getLogger(__name__)


def handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    """
    Logs exceptions from tasks nobody awaited (late Playwright callbacks, a
    failed background sweep) instead of letting them pass silently.
    """
    exc = context.get("exception")
    message = context.get("message", "Unhandled exception in event loop")
    logger.error(f"Unhandled asyncio error: {message}", exc_info=exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    asyncio.get_running_loop().set_exception_handler(handle_loop_exception)

    manager = RenderingManager(config=config_manager)
    app.state.rendering_manager = manager
    await manager.startup()
    logger.info("Render Proxy started.")
    try:
        yield
    finally:
        logger.info("Render Proxy shutting down.")
        await manager.shutdown()


# --- FastAPI Application Initialization ---
app = FastAPI(
    title="Render Proxy",
    description="Serves screenshots, HTML snapshots and PDFs of web pages rendered in headless Chromium.",
    version=__version__,
    lifespan=lifespan,
)

# --- Global Exception Handlers ---

@app.exception_handler(RenderProxyError)
async def render_proxy_exception_handler(request: Request, exc: RenderProxyError):
    """
    Handles application errors raised before a request reaches the rendering
    manager (which converts its own failures into results), such as a missing
    `url` parameter.

    Returns:
        PlainTextResponse: HTTP 400 with the error message as the body.
    """
    logger.warning(
        f"{exc.__class__.__name__} for request: {request.method} {request.url}: {exc.message}"
    )
    return PlainTextResponse(status_code=status.HTTP_400_BAD_REQUEST, content=exc.message)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """
    Handles any other unhandled Python exceptions that were not caught by more specific handlers.

    Returns:
        JSONResponse: A generic JSON error response indicating an unexpected server error.
    """
    logger.critical(
        f"Generic unhandled exception caught: {exc.__class__.__name__} - {str(exc)} "
        f"for request: {request.method} {request.url}",
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected server error occurred."},
    )


# --- API Router Inclusion ---
# Status routes first: `/{action}` would otherwise match `/status` and `/favicon.ico`.
app.include_router(status_routes.router, tags=["Status"])
app.include_router(render_routes.router, tags=["Rendering"])


# --- Main Execution Block ---
if __name__ == "__main__":
    import uvicorn

    host = config_manager.get("server.host", "0.0.0.0")
    port = int(config_manager.get("server.port", 3000))
    logger.info(f"Starting Uvicorn server on {host}:{port}")
    uvicorn.run(app, host=host, port=port)
