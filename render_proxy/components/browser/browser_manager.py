"""
Lifecycle of the process-wide Playwright browser.

This module provides the `BrowserManager` class, which owns at most one running
Chromium instance. The browser is launched lazily on first use, shared by every
page the proxy opens, and torn down when a request observes a fatal transport
failure so the next request relaunches it. It can also be used as an
asynchronous context manager, closing the browser and stopping Playwright on exit.
"""
import asyncio
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from playwright.async_api import async_playwright, Playwright, Browser, Page

from render_proxy.core.exceptions import BrowserLaunchError, BrowserTransportError
from render_proxy.core.logger import get_logger

if TYPE_CHECKING:
    from render_proxy.core.config import ConfigurationManager

logger = get_logger(__name__)


class BrowserManager:
    """
    Owns zero or one running browser instance.

    Attributes:
        headless (bool): Launch without a visible window. Headful mode also opens
                         devtools for every tab.
        executable_path (Optional[str]): Custom Chromium binary.
        debug (bool): Forward browser console output to the log.
        args (List[str]): Chromium command-line flags.
        playwright (Optional[Playwright]): The Playwright driver, started with the browser.
        browser (Optional[Browser]): The running browser, or None.
    """
    DEFAULT_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]
    HEADFUL_ARGS = ["--auto-open-devtools-for-tabs"]

    def __init__(self, config: Optional['ConfigurationManager'] = None):
        """
        Initializes the BrowserManager. Nothing is launched until `ensure_browser()`.

        Args:
            config (Optional[ConfigurationManager]): Source of `browser.*` settings.
                If None, defaults are used (headless, bundled Chromium).
        """
        if config:
            self.headless = bool(config.get('browser.headless', True))
            self.executable_path = config.get('browser.executable_path')
            self.debug = bool(config.get('browser.debug', False))
            self.args = list(config.get('browser.args') or self.DEFAULT_ARGS)
        else:
            self.headless = True
            self.executable_path = None
            self.debug = False
            self.args = list(self.DEFAULT_ARGS)

        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self._launch_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self.browser is not None

    def launch_options(self) -> Dict[str, Any]:
        args: List[str] = list(self.args)
        if not self.headless:
            args.extend(a for a in self.HEADFUL_ARGS if a not in args)
        options: Dict[str, Any] = {"headless": self.headless, "args": args}
        if self.executable_path:
            options["executable_path"] = self.executable_path
        return options

    async def ensure_browser(self) -> Browser:
        """
        Returns the running browser, launching it first if there is none.

        Concurrent callers share one launch. A failed launch is not retried.

        Raises:
            BrowserLaunchError: If Playwright fails to start or the browser fails to launch.
        """
        if self.browser is not None:
            return self.browser
        async with self._launch_lock:
            if self.browser is not None:
                return self.browser
            logger.info("Launching browser.")
            try:
                if self.playwright is None:
                    self.playwright = await async_playwright().start()
                browser = await self.playwright.chromium.launch(**self.launch_options())
            except Exception as e:
                logger.error(f"Failed to launch browser: {e}", exc_info=True)
                raise BrowserLaunchError(str(e))
            browser.on("disconnected", self._on_disconnected)
            self.browser = browser
            logger.info(f"Browser launched (version {browser.version}).")
            return browser

    def _on_disconnected(self, browser: Browser) -> None:
        if self.browser is browser:
            logger.warning("Browser disconnected; it will be relaunched on the next request.")
            self.browser = None

    async def new_page(self, width: int, height: int) -> Page:
        """
        Opens a page in its own browser context on the running browser.

        Raises:
            BrowserLaunchError: If the browser has to be launched and that fails.
            BrowserTransportError: If the browser is no longer reachable.
        """
        browser = await self.ensure_browser()
        if not browser.is_connected():
            self.browser = None
            raise BrowserTransportError("Browser connection not opened.")
        page = await browser.new_page(
            viewport={"width": width, "height": height},
            ignore_https_errors=True,
        )
        if self.debug:
            page.on("console", lambda message: logger.debug(f"[browser console] {message.type}: {message.text}"))
        return page

    async def kill_browser(self) -> None:
        """
        Drops the browser reference and closes it. Idempotent; close failures are
        logged and ignored.
        """
        browser, self.browser = self.browser, None
        if browser is None:
            return
        logger.warning("Closing browser.")
        try:
            await browser.close()
        except Exception as e:
            logger.warning(f"Browser could not be closed cleanly: {e}")

    async def close(self) -> None:
        """Closes the browser and stops the Playwright driver."""
        await self.kill_browser()
        if self.playwright:
            try:
                await self.playwright.stop()
                logger.info("Playwright stopped.")
            except Exception as e:
                logger.error(f"Error stopping Playwright: {e}", exc_info=True)
        self.playwright = None

    async def __aenter__(self) -> 'BrowserManager':
        await self.ensure_browser()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
