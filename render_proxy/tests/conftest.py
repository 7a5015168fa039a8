"""
Shared fixtures: Playwright pages are replaced by mocks exposing the async
methods the components call.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from render_proxy.components.session.session import Session


def make_page(url: str = "http://example.com/"):
    page = MagicMock()
    for name in (
        "route", "unroute_all", "close", "goto", "set_viewport_size",
        "screenshot", "pdf", "content", "evaluate", "query_selector",
    ):
        setattr(page, name, AsyncMock())
    page.context.clear_cookies = AsyncMock()
    frame = MagicMock()
    frame.evaluate = AsyncMock()
    page.frames = [frame]
    page.url = url
    page.viewport_size = {"width": 1024, "height": 768}
    return page


class FakeClock:
    """Monotonic clock the tests advance by hand."""
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def page_factory():
    return make_page


@pytest.fixture
def session_factory():
    def _make(key: str = "http://example.com/", page=None) -> Session:
        return Session(key=key, page=page if page is not None else make_page(key))
    return _make


@pytest.fixture
def clock():
    return FakeClock()
