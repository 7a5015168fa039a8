"""
Turns a loaded session into a screenshot, an HTML snapshot or a PDF.

Every action runs under its own time box. On success the session is marked
done (the request filter then rejects all further traffic from it), handed to
the session cache if it is not resident yet, and frozen so a cached page stops
doing background work. Failure handling (destroying the session) belongs to the
caller, which knows whether the session is cache-resident.
"""
import asyncio
import math
from typing import Any, Awaitable, Dict, Optional

from render_proxy.components.actions.sanitizer import sanitize_html
from render_proxy.components.actions.thumbnail import make_thumbnail
from render_proxy.components.navigation.navigator import evaluate_in_frames
from render_proxy.components.session.session import Session
from render_proxy.components.session.session_cache import SessionCache, dispose_session
from render_proxy.core.exceptions import ActionTimeoutError, UnsupportedActionError
from render_proxy.core.logger import get_logger
from render_proxy.core.models import PDF, RENDER, SCREENSHOT, RenderRequest, RenderResult

logger = get_logger(__name__)

TIMEOUT_LABELS = {
    SCREENSHOT: "Screenshot timed out",
    RENDER: "Render timed out",
    PDF: "PDF timed out",
}

IMAGE_MIME_TYPES = {"png": "image/png", "jpeg": "image/jpeg"}
PDF_MARGIN = {"top": "5mm", "right": "5mm", "bottom": "5mm", "left": "5mm"}

BOUNDING_RECT_SCRIPT = """(element) => {
    const { x, y, width, height } = element.getBoundingClientRect();
    return { x, y, width, height };
}"""

# Interval and timeout ids share one counter, so clearing ids 1..99999 clears both.
FREEZE_SCRIPT = """() => {
    for (let i = 1; i < 99999; i++) window.clearInterval(i);
    XMLHttpRequest.prototype.send = () => {};
    window.fetch = () => new Promise(() => {});
    window.requestAnimationFrame = () => 0;
}"""


async def time_box(awaitable: Awaitable[Any], timeout_ms: int, action: str) -> Any:
    """
    Awaits `awaitable` for at most `timeout_ms`. On expiry our side stops waiting;
    the browser may keep working until the page is closed.

    Raises:
        ActionTimeoutError: Labeled for `action`.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        raise ActionTimeoutError(action, TIMEOUT_LABELS[action])


class ActionDispatcher:
    """
    Runs the requested action against a session and returns the artifact.

    Attributes:
        cache (SessionCache): Where finished sessions are kept for reuse.
    """
    DEFAULT_TIMEOUT_MS = 10000

    def __init__(self, cache: SessionCache, default_timeout_ms: int = DEFAULT_TIMEOUT_MS):
        self.cache = cache
        self.default_timeout_ms = default_timeout_ms
        self._handlers = {
            SCREENSHOT: self.screenshot,
            RENDER: self.render,
            PDF: self.pdf,
        }

    async def perform(self, session: Session, request: RenderRequest) -> RenderResult:
        """
        Runs `request.action` on `session` and then quiesces the session.

        Raises:
            UnsupportedActionError: For an unknown action name.
            ActionTimeoutError: If the action exceeds `request.action_timeout`.
            Exception: Whatever Playwright raised while producing the artifact.
        """
        handler = self._handlers.get(request.action)
        if handler is None:
            raise UnsupportedActionError(request.action)

        logger.info(f"Perform action: {request.action} on {session.key}")
        result = await handler(session, request)
        logger.info(f"Done action: {request.action} on {session.key}")

        await self.finish(session)
        return result

    async def finish(self, session: Session) -> None:
        """Marks the session done and makes sure the cache holds it."""
        session.action_done = True
        if self.cache.owns(session.key, session):
            # Resident already, possibly past its TTL; an insert would extend it.
            return
        if await self.cache.set(session.key, session):
            await evaluate_in_frames(session.page, FREEZE_SCRIPT)
        else:
            # Another session already owns the key; this one has served its request.
            await dispose_session(session, "duplicate")

    def _timeout(self, request: RenderRequest) -> int:
        return request.action_timeout or self.default_timeout_ms

    async def screenshot(self, session: Session, request: RenderRequest) -> RenderResult:
        page = session.page
        image_type = "jpeg" if request.image_type == "jpeg" else "png"
        thumbnailing = bool(request.thumb_width) and request.thumb_width < request.width

        async def _capture() -> bytes:
            clip: Optional[Dict[str, float]] = None
            if request.clip_selector:
                handle = await page.query_selector(request.clip_selector)
                if handle is not None:
                    clip = await page.evaluate(BOUNDING_RECT_SCRIPT, handle)
                    bottom = clip["y"] + clip["height"]
                    viewport_height = (page.viewport_size or session.viewport.as_dict())["height"]
                    if viewport_height < bottom:
                        await session.set_viewport(request.width, math.ceil(bottom))

            options: Dict[str, Any] = {"type": image_type, "full_page": request.full_page}
            if clip is not None:
                options["clip"] = clip
            if image_type == "jpeg":
                options["quality"] = 100 if thumbnailing else request.jpeg_quality
            return await page.screenshot(**options)

        image = await time_box(_capture(), self._timeout(request), SCREENSHOT)

        if thumbnailing:
            quality = request.jpeg_quality if image_type == "jpeg" else 100
            image = await asyncio.to_thread(make_thumbnail, image, request.thumb_width, image_type, quality)

        return RenderResult(status_code=200, content_type=IMAGE_MIME_TYPES[image_type], body=image)

    async def render(self, session: Session, request: RenderRequest) -> RenderResult:
        page = session.page

        async def _snapshot() -> str:
            html = await page.content()
            if request.raw:
                return html
            return await asyncio.to_thread(sanitize_html, html, page.url)

        content = await time_box(_snapshot(), self._timeout(request), RENDER)
        return RenderResult(status_code=200, content_type="text/html; charset=UTF-8", body=content.encode("utf-8"))

    async def pdf(self, session: Session, request: RenderRequest) -> RenderResult:
        options: Dict[str, Any] = {
            "format": request.format or "A4",
            "landscape": request.landscape,
            "margin": PDF_MARGIN,
        }
        if request.page_ranges:
            options["page_ranges"] = request.page_ranges

        document = await time_box(session.page.pdf(**options), self._timeout(request), PDF)
        return RenderResult(status_code=200, content_type="application/pdf", body=document)
