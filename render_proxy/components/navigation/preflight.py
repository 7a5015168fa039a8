"""
URL validation and the content-type preflight run before any browser session is opened.
"""
import re
from typing import Optional

import httpx

from render_proxy.core.exceptions import InvalidURLError, NotHTMLPageError
from render_proxy.core.logger import get_logger

logger = get_logger(__name__)

HTTP_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
HTML_CONTENT_TYPE_PATTERN = re.compile(r"text/html", re.IGNORECASE)


def validate_page_url(url: str) -> str:
    """Returns `url` unchanged if it is an http(s) URL, raises InvalidURLError otherwise."""
    if not url or not HTTP_URL_PATTERN.match(url):
        raise InvalidURLError(url)
    return url


def is_html_response(status_code: int, content_type: Optional[str]) -> bool:
    return 200 <= status_code < 300 and bool(content_type) and HTML_CONTENT_TYPE_PATTERN.search(content_type) is not None


class ContentTypePreflight:
    """
    Issues a HEAD request to the target and rejects anything that is not an HTML document.

    A HEAD that produces no response at all (connection refused, DNS failure,
    timeout) is inconclusive and lets the request proceed; the browser will then
    report its own navigation error.
    """
    DEFAULT_TIMEOUT_SECONDS = 10.0

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS, client: Optional[httpx.AsyncClient] = None):
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                verify=False,
                timeout=httpx.Timeout(self.timeout_seconds),
            )
        return self._client

    async def check(self, url: str) -> None:
        """
        Raises:
            NotHTMLPageError: If the HEAD response is not a 2xx `text/html` document.
        """
        client = await self._get_client()
        try:
            response = await client.head(url)
        except httpx.HTTPError as e:
            logger.info(f"Preflight HEAD for {url} returned no headers ({e.__class__.__name__}: {e}); proceeding.")
            return

        content_type = response.headers.get("content-type")
        if not is_html_response(response.status_code, content_type):
            logger.info(f"Preflight rejected {url}: status {response.status_code}, content-type {content_type!r}.")
            raise NotHTMLPageError(url, content_type)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
