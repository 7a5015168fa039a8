"""
Opens and loads a new browser session on a cache miss.

`NavigationController.open_session` drives one session through
preflight -> navigating -> idle-settled, or into redirect-detected / failed.
The request filter and the redirect observer are independent predicates
attached to the page before navigation starts.
"""
import asyncio
from typing import Optional

from playwright.async_api import Page, Response

from render_proxy.components.browser.browser_manager import BrowserManager
from render_proxy.components.navigation.request_filter import RequestFilter
from render_proxy.components.session.session import NavigationState, Session, Viewport
from render_proxy.components.session.session_cache import dispose_session
from render_proxy.core.exceptions import NavigationError, RedirectLoopError, RenderProxyError
from render_proxy.core.logger import get_logger

logger = get_logger(__name__)

PAUSE_MEDIA_SCRIPT = """() => {
    document.querySelectorAll('video, audio').forEach((media) => {
        if (!media) return;
        if (media.pause) media.pause();
        media.preload = 'none';
    });
}"""


FRAME_SCRIPT_TIMEOUT_SECONDS = 2.0


def redirects_to_proxy(location: Optional[str], proxy_host: Optional[str]) -> bool:
    """True if a `Location` header points back at the proxy's own host."""
    return bool(location) and bool(proxy_host) and proxy_host in location


async def evaluate_in_frames(page: Page, script: str, timeout_seconds: Optional[float] = None) -> int:
    """
    Runs `script` in every frame of `page`, best-effort. Returns how many frames failed;
    a frame detached mid-way is not an error worth failing the request for.

    A page that keeps its main thread busy never answers; after `timeout_seconds`
    the pending evaluations are cancelled and every frame counts as failed.
    Defaults to `FRAME_SCRIPT_TIMEOUT_SECONDS`.
    """
    if timeout_seconds is None:
        timeout_seconds = FRAME_SCRIPT_TIMEOUT_SECONDS
    frames = list(page.frames)
    try:
        results = await asyncio.wait_for(
            asyncio.gather(*(frame.evaluate(script) for frame in frames), return_exceptions=True),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning(f"Frame script timed out after {timeout_seconds}s on {page.url}")
        return len(frames)
    failures = [r for r in results if isinstance(r, Exception)]
    for failure in failures:
        logger.debug(f"Frame script skipped: {failure}")
    return len(failures)


class NavigationController:
    """
    Builds sessions for URLs that are not cached.

    Attributes:
        browser_manager (BrowserManager): Source of pages.
        request_filter (RequestFilter): Installed on every new page before navigation.
    """
    WAIT_UNTIL = "networkidle"

    def __init__(self, browser_manager: BrowserManager, request_filter: RequestFilter):
        self.browser_manager = browser_manager
        self.request_filter = request_filter

    async def open_session(
        self,
        url: str,
        width: int,
        height: int,
        proxy_host: Optional[str] = None,
        navigation_timeout_ms: int = 0,
    ) -> Session:
        """
        Opens a page, installs the filter and redirect observer, and navigates to `url`.

        Args:
            url (str): Page URL; becomes the session key as-is.
            width (int), height (int): Initial viewport.
            proxy_host (Optional[str]): Host the proxy was reached at; a redirect
                                        pointing there aborts navigation.
            navigation_timeout_ms (int): Bound on navigation; 0 means unbounded.

        Returns:
            Session: A settled session, not yet cached.

        Raises:
            RedirectLoopError: If a response redirects through the proxy itself.
            BrowserLaunchError: If the browser could not be started.
            NavigationError: For any other failure. The partially built session is
                             destroyed before raising.
        """
        page = await self.browser_manager.new_page(width, height)
        session = Session(key=url, page=page, viewport=Viewport(width=width, height=height))
        try:
            await self.request_filter.install(session)
            redirect_detected = self._observe_redirects(session, proxy_host)
            await session.set_viewport(width, height)

            session.state = NavigationState.NAVIGATING
            logger.info(f"Fetching {url}")
            await self._navigate(session, redirect_detected, navigation_timeout_ms)
            session.state = NavigationState.IDLE_SETTLED

            await evaluate_in_frames(page, PAUSE_MEDIA_SCRIPT)
        except Exception as e:
            if session.state is not NavigationState.REDIRECT_DETECTED:
                session.state = NavigationState.FAILED
            logger.error(f"Navigation to {url} failed: {e}")
            await dispose_session(session, "navigation failed", clear_cookies=False)
            if isinstance(e, RenderProxyError):
                raise
            raise NavigationError(str(e)) from e
        return session

    def _observe_redirects(self, session: Session, proxy_host: Optional[str]) -> asyncio.Future:
        redirect_detected: asyncio.Future = asyncio.get_running_loop().create_future()

        def _on_response(response: Response) -> None:
            location = response.headers.get("location")
            if redirects_to_proxy(location, proxy_host) and not redirect_detected.done():
                logger.warning(f"Redirect back to the proxy detected for {session.key}: {location}")
                session.state = NavigationState.REDIRECT_DETECTED
                redirect_detected.set_exception(RedirectLoopError(location))

        session.add_listener("response", _on_response)
        return redirect_detected

    async def _navigate(self, session: Session, redirect_detected: asyncio.Future, timeout_ms: int) -> None:
        goto = asyncio.ensure_future(
            session.page.goto(session.key, wait_until=self.WAIT_UNTIL, timeout=max(0, timeout_ms))
        )
        done, pending = await asyncio.wait({goto, redirect_detected}, return_when=asyncio.FIRST_COMPLETED)
        for future in pending:
            future.cancel()

        if redirect_detected in done:
            # A redirect loop wins over whatever goto did at the same time.
            if goto.done() and not goto.cancelled():
                goto.exception()
            raise redirect_detected.exception()
        goto.result()
