import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from render_proxy.components.navigation.navigator import (
    PAUSE_MEDIA_SCRIPT,
    NavigationController,
    evaluate_in_frames,
    redirects_to_proxy,
)
from render_proxy.components.navigation.request_filter import RequestFilter
from render_proxy.components.session.session import NavigationState
from render_proxy.core.exceptions import BrowserLaunchError, NavigationError, RedirectLoopError

PROXY_HOST = "proxy.test:3000"


@pytest.fixture
def page(page_factory):
    return page_factory("http://example.com/")


@pytest.fixture
def controller(page):
    browser_manager = MagicMock()
    browser_manager.new_page = AsyncMock(return_value=page)
    return NavigationController(browser_manager, RequestFilter())


def response_handler(page):
    for call in page.on.call_args_list:
        event, handler = call.args
        if event == "response":
            return handler
    raise AssertionError("no response listener registered")


def fake_response(location=None):
    response = MagicMock()
    response.headers = {"location": location} if location else {}
    return response


@pytest.mark.parametrize("location, host, expected", [
    ("http://proxy.test:3000/screenshot?url=x", PROXY_HOST, True),
    ("http://example.com/other", PROXY_HOST, False),
    (None, PROXY_HOST, False),
    ("http://proxy.test:3000/", None, False),
])
def test_redirects_to_proxy(location, host, expected):
    assert redirects_to_proxy(location, host) is expected


@pytest.mark.asyncio
async def test_open_session_settles(controller, page):
    session = await controller.open_session("http://example.com/", 800, 600, proxy_host=PROXY_HOST)

    assert session.key == "http://example.com/"
    assert session.state is NavigationState.IDLE_SETTLED
    assert session.closed is False
    controller.browser_manager.new_page.assert_awaited_once_with(800, 600)
    page.route.assert_awaited_once()
    page.set_viewport_size.assert_awaited_once_with({"width": 800, "height": 600})
    page.goto.assert_awaited_once_with("http://example.com/", wait_until="networkidle", timeout=0)
    page.frames[0].evaluate.assert_awaited_once_with(PAUSE_MEDIA_SCRIPT)


@pytest.mark.asyncio
async def test_navigation_timeout_is_passed_through(controller, page):
    await controller.open_session("http://example.com/", 1024, 768, navigation_timeout_ms=5000)
    assert page.goto.await_args.kwargs["timeout"] == 5000


@pytest.mark.asyncio
async def test_redirect_back_to_proxy_aborts_navigation(controller, page):
    async def goto(url, **kwargs):
        response_handler(page)(fake_response("http://proxy.test:3000/screenshot?url=http://example.com/"))
        await asyncio.sleep(10)

    page.goto.side_effect = goto

    with pytest.raises(RedirectLoopError) as excinfo:
        await asyncio.wait_for(
            controller.open_session("http://example.com/", 1024, 768, proxy_host=PROXY_HOST),
            timeout=2,
        )

    assert excinfo.value.message == "Possible infinite redirects detected."
    page.close.assert_awaited_once()
    page.context.clear_cookies.assert_not_awaited()


@pytest.mark.asyncio
async def test_unrelated_redirect_is_ignored(controller, page):
    async def goto(url, **kwargs):
        response_handler(page)(fake_response("https://www.example.com/"))

    page.goto.side_effect = goto

    session = await controller.open_session("http://example.com/", 1024, 768, proxy_host=PROXY_HOST)
    assert session.state is NavigationState.IDLE_SETTLED


@pytest.mark.asyncio
async def test_navigation_failure_destroys_page(controller, page):
    page.goto.side_effect = RuntimeError("net::ERR_NAME_NOT_RESOLVED at http://example.com/")

    with pytest.raises(NavigationError) as excinfo:
        await controller.open_session("http://example.com/", 1024, 768)

    assert "ERR_NAME_NOT_RESOLVED" in excinfo.value.message
    page.close.assert_awaited_once()
    page.unroute_all.assert_awaited_once()


@pytest.mark.asyncio
async def test_launch_failure_propagates(controller):
    controller.browser_manager.new_page.side_effect = BrowserLaunchError("no chromium")
    with pytest.raises(BrowserLaunchError):
        await controller.open_session("http://example.com/", 1024, 768)


@pytest.mark.asyncio
async def test_evaluate_in_frames_counts_failures(page):
    broken = MagicMock()
    broken.evaluate = AsyncMock(side_effect=RuntimeError("Frame was detached"))
    page.frames = [page.frames[0], broken]

    assert await evaluate_in_frames(page, "() => 1") == 1
    page.frames[0].evaluate.assert_awaited_once_with("() => 1")


async def hang(*args, **kwargs):
    await asyncio.sleep(3600)


@pytest.mark.asyncio
async def test_evaluate_in_frames_gives_up_on_busy_page(page):
    page.frames[0].evaluate = AsyncMock(side_effect=hang)

    assert await asyncio.wait_for(evaluate_in_frames(page, "() => 1", timeout_seconds=0.05), 1) == 1


@pytest.mark.asyncio
async def test_open_session_returns_when_media_pause_never_answers(controller, page, monkeypatch):
    monkeypatch.setattr("render_proxy.components.navigation.navigator.FRAME_SCRIPT_TIMEOUT_SECONDS", 0.05)
    page.frames[0].evaluate = AsyncMock(side_effect=hang)

    session = await asyncio.wait_for(controller.open_session("http://example.com/", 800, 600), 1)

    assert session.state is NavigationState.IDLE_SETTLED
    assert session.closed is False
