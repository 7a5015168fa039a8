import asyncio
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

from render_proxy.components.actions.dispatcher import ActionDispatcher
from render_proxy.components.browser.browser_manager import BrowserManager
from render_proxy.components.navigation.navigator import NavigationController
from render_proxy.components.navigation.preflight import ContentTypePreflight, validate_page_url
from render_proxy.components.navigation.request_filter import RequestFilter
from render_proxy.components.session.session import Session
from render_proxy.components.session.session_cache import SessionCache, dispose_session
from render_proxy.core.exceptions import (
    BrowserTransportError,
    InputValidationError,
    NavigationError,
    NotHTMLPageError,
    RenderProxyError,
    UnsupportedActionError,
    is_transport_fatal,
)
from render_proxy.core.logger import get_logger
from render_proxy.core.models import ACTIONS, RenderRequest, RenderResult

if TYPE_CHECKING:
    from render_proxy.core.config import ConfigurationManager

logger = get_logger(__name__)


class RenderingManager:
    """
    The request boundary of the proxy.

    Validates the request, runs the content-type preflight, obtains a session
    (from the cache, from a navigation already in flight for the same URL, or by
    navigating), dispatches the action and converts every failure into a uniform
    400 result. Concurrent requests for one URL share one session: the first
    miss registers a future under the key and later requests await it instead
    of navigating again.
    """
    MAX_SESSION_ATTEMPTS = 2

    def __init__(
        self,
        config: Optional['ConfigurationManager'] = None,
        browser_manager: Optional[BrowserManager] = None,
        cache: Optional[SessionCache] = None,
        request_filter: Optional[RequestFilter] = None,
        preflight: Optional[ContentTypePreflight] = None,
    ):
        """
        Initializes the RenderingManager and its components.

        Args:
            config (Optional[ConfigurationManager]): Source of cache, filter, browser and
                preflight settings. Components passed explicitly take precedence.
        """
        self.config = config
        get = config.get if config is not None else (lambda key, default=None: default)

        self.browser_manager = browser_manager or BrowserManager(config=config)
        self.cache = cache or SessionCache(
            max_size=int(get("cache.max_size", SessionCache.DEFAULT_MAX_SIZE)),
            ttl_seconds=float(get("cache.ttl_seconds", SessionCache.DEFAULT_TTL_SECONDS)),
        )
        self.request_filter = request_filter or RequestFilter.from_config(config)
        self.preflight = preflight or ContentTypePreflight(
            timeout_seconds=float(get("preflight.timeout_seconds", ContentTypePreflight.DEFAULT_TIMEOUT_SECONDS))
        )
        self.prune_interval_seconds = float(get("cache.prune_interval_seconds", 60))

        self.navigator = NavigationController(self.browser_manager, self.request_filter)
        self.dispatcher = ActionDispatcher(
            self.cache,
            default_timeout_ms=int(get("actions.default_timeout_ms", ActionDispatcher.DEFAULT_TIMEOUT_MS)),
        )
        self._in_flight: Dict[str, asyncio.Future] = {}

        logger.info(
            f"RenderingManager initialized (cache size {self.cache.max_size}, TTL {self.cache.ttl_seconds}s)."
        )

    async def startup(self) -> None:
        """Starts the periodic cache sweep on the running loop."""
        self.cache.start_pruning(self.prune_interval_seconds)

    async def shutdown(self) -> None:
        """Stops the sweep, disposes every cached session and closes the browser."""
        await self.cache.stop_pruning()
        await self.cache.clear()
        await self.preflight.aclose()
        await self.browser_manager.close()

    def cached_urls(self) -> List[str]:
        return self.cache.keys()

    async def handle(self, request: RenderRequest, proxy_host: Optional[str] = None) -> RenderResult:
        """
        Produces the artifact for `request`.

        Args:
            request (RenderRequest): What to render and how.
            proxy_host (Optional[str]): Host header the proxy was reached with; used
                                        to detect redirects back through the proxy.

        Returns:
            RenderResult: The artifact, or a 400 text/plain result carrying the
                          underlying error message. Never raises for request failures.
        """
        try:
            if request.action not in ACTIONS:
                raise UnsupportedActionError(request.action)
            validate_page_url(request.url)
            await self.preflight.check(request.url)
            return await self._render(request, proxy_host)
        except Exception as e:
            return await self._fail(request, e)

    async def _render(self, request: RenderRequest, proxy_host: Optional[str]) -> RenderResult:
        for _ in range(self.MAX_SESSION_ATTEMPTS):
            session, creation = await self._acquire_session(request, proxy_host)
            try:
                async with session.lock:
                    if session.closed:
                        # A concurrent request failed on this session and destroyed it.
                        continue
                    try:
                        if creation is None:
                            await session.set_viewport(request.width, request.height)
                        return await self.dispatcher.perform(session, request)
                    except BaseException:
                        # Cancellation included: a half-used page is never cached again.
                        await self._destroy(session)
                        raise
            finally:
                if creation is not None:
                    self._release(request.url, creation)
        raise NavigationError(f"Session for {request.url} was closed before it could be used.")

    async def _acquire_session(
        self, request: RenderRequest, proxy_host: Optional[str]
    ) -> Tuple[Session, Optional[asyncio.Future]]:
        """
        Returns (session, creation). `creation` is the in-flight future this call
        registered, or None when the session came from the cache or another request.
        """
        key = request.url
        session = await self.cache.get(key)
        if session is not None:
            logger.info(f"Cache hit for {key}")
            return session, None

        pending = self._in_flight.get(key)
        if pending is not None:
            logger.info(f"Joining in-flight navigation for {key}")
            return await asyncio.shield(pending), None

        creation: asyncio.Future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = creation
        try:
            session = await self.navigator.open_session(
                url=key,
                width=request.width,
                height=request.height,
                proxy_host=proxy_host,
                navigation_timeout_ms=request.navigation_timeout,
            )
        except BaseException as e:
            error = e if isinstance(e, Exception) else NavigationError(f"Navigation to {key} was cancelled.")
            self._release(key, creation, error)
            raise
        creation.set_result(session)
        return session, creation

    def _release(self, key: str, creation: asyncio.Future, error: Optional[Exception] = None) -> None:
        if self._in_flight.get(key) is creation:
            del self._in_flight[key]
        if not creation.done():
            creation.set_exception(error or NavigationError(f"Navigation to {key} did not complete."))
        if not creation.cancelled() and creation.exception() is not None:
            # Mark the exception retrieved; joiners (if any) already received it.
            logger.debug(f"In-flight navigation for {key} failed: {creation.exception()}")

    async def _destroy(self, session: Session) -> None:
        """
        Failure path: take the session out of the cache, then close it directly.
        """
        self.cache.discard(session.key, session)
        await dispose_session(session, "failed", clear_cookies=False)

    async def _fail(self, request: RenderRequest, error: Exception) -> RenderResult:
        message = error.message if isinstance(error, RenderProxyError) else str(error)

        if isinstance(error, (InputValidationError, NotHTMLPageError)):
            logger.info(f"Rejected {request.url}: {message}")
        else:
            logger.error(f"Request for {request.url} ({request.action}) failed: {message}", exc_info=not isinstance(error, RenderProxyError))
            await self.cache.delete(request.url)

        if isinstance(error, BrowserTransportError) or is_transport_fatal(message):
            logger.error("Browser connection failed; killing the browser.")
            await self.browser_manager.kill_browser()
            # Every cached page belonged to the dead browser.
            await self.cache.clear()

        return RenderResult.failure(message)
