import pytest
from unittest.mock import AsyncMock, MagicMock

from render_proxy.components.navigation.request_filter import (
    Decision,
    RequestEvent,
    RequestFilter,
    compile_blocklist,
    load_blocklist,
    truncate,
)
from render_proxy.core.exceptions import ConfigurationError


def event(url="https://example.com/app.js", resource_type="script", elapsed=1.0, count=0, done=False):
    return RequestEvent(
        url=url,
        method="GET",
        resource_type=resource_type,
        elapsed_seconds=elapsed,
        request_count=count,
        action_done=done,
    )


@pytest.fixture
def request_filter():
    return RequestFilter(blocklist=["google-analytics\\.com", "doubleclick\\.net"])


def test_decide_is_deterministic(request_filter):
    e = event(url="https://www.google-analytics.com/analytics.js")
    assert request_filter.decide(e) == request_filter.decide(e) == Decision.ABORT_BLOCKED


def test_ordinary_request_allowed(request_filter):
    assert request_filter.decide(event()) is Decision.ALLOW


def test_data_uri_always_allowed(request_filter):
    assert request_filter.decide(event(url="data:image/png;base64,AAAA", elapsed=99, count=500, done=True)) is Decision.ALLOW
    assert request_filter.decide(event(url="DATA:text/plain,hi", resource_type="other")) is Decision.ALLOW


@pytest.mark.parametrize("elapsed, count, done", [
    (15.1, 0, False),
    (1.0, 101, False),
    (1.0, 0, True),
])
def test_budget_exhausted(request_filter, elapsed, count, done):
    assert request_filter.decide(event(elapsed=elapsed, count=count, done=done)) is Decision.ABORT_BUDGET


def test_budget_limits_are_exclusive(request_filter):
    assert request_filter.decide(event(elapsed=15.0, count=100)) is Decision.ALLOW


def test_budget_checked_before_blocklist(request_filter):
    e = event(url="https://ad.doubleclick.net/x", done=True)
    assert request_filter.decide(e) is Decision.ABORT_BUDGET


@pytest.mark.parametrize("resource_type", ["manifest", "other", "Manifest"])
def test_non_essential_resource_types_blocked(request_filter, resource_type):
    assert request_filter.decide(event(resource_type=resource_type)) is Decision.ABORT_BLOCKED


def test_blocklist_is_case_insensitive(request_filter):
    assert request_filter.is_blocked("https://STATS.DoubleClick.NET/pixel")
    assert not request_filter.is_blocked("https://example.com/")


def test_empty_blocklist_blocks_nothing():
    assert RequestFilter().is_blocked("https://www.google-analytics.com/") is False


def test_evaluate_counts_only_allowed_non_data_requests(request_filter, session_factory):
    session = session_factory()

    request_filter.evaluate(session, "https://example.com/a.css", "GET", "stylesheet")
    request_filter.evaluate(session, "data:image/gif;base64,R0lGOD", "GET", "image")
    request_filter.evaluate(session, "https://www.google-analytics.com/ga.js", "GET", "script")

    assert session.request_count == 1


def test_evaluate_aborts_everything_after_action(request_filter, session_factory):
    session = session_factory()
    session.action_done = True
    assert request_filter.evaluate(session, "https://example.com/poll", "POST", "xhr") is Decision.ABORT_BUDGET
    assert session.request_count == 0


def test_evaluate_enforces_request_budget(session_factory):
    request_filter = RequestFilter(max_requests=2)
    session = session_factory()
    decisions = [request_filter.evaluate(session, f"https://example.com/{i}.png", "GET", "image") for i in range(5)]
    assert decisions == [Decision.ALLOW] * 3 + [Decision.ABORT_BUDGET] * 2


def make_route(url, resource_type="script"):
    route = MagicMock()
    route.request.url = url
    route.request.method = "GET"
    route.request.resource_type = resource_type
    route.continue_ = AsyncMock()
    route.abort = AsyncMock()
    return route


@pytest.mark.asyncio
async def test_install_routes_requests_through_filter(request_filter, session_factory):
    session = session_factory()
    await request_filter.install(session)

    pattern, handler = session.page.route.await_args.args
    assert pattern == "**/*"

    allowed = make_route("https://example.com/app.js")
    await handler(allowed)
    allowed.continue_.assert_awaited_once()
    allowed.abort.assert_not_awaited()

    blocked = make_route("https://www.google-analytics.com/analytics.js")
    await handler(blocked)
    blocked.abort.assert_awaited_once_with("blockedbyclient")


@pytest.mark.asyncio
async def test_route_failures_are_ignored(request_filter, session_factory):
    session = session_factory()
    await request_filter.install(session)
    _, handler = session.page.route.await_args.args

    route = make_route("https://example.com/late.js")
    route.continue_.side_effect = RuntimeError("Target page, context or browser has been closed")
    await handler(route)


def test_truncate():
    assert truncate("x" * 70) == "x" * 70
    assert truncate("x" * 71) == "x" * 70 + "…"


def test_compile_blocklist_rejects_bad_regex():
    with pytest.raises(ConfigurationError) as excinfo:
        compile_blocklist(["(unclosed"])
    assert "Invalid blocklist pattern" in str(excinfo.value)


def test_default_blocklist_loads():
    patterns = load_blocklist()
    assert patterns
    assert RequestFilter(blocklist=patterns).is_blocked("https://www.googletagmanager.com/gtm.js")


def test_load_blocklist_from_file(tmp_path):
    path = tmp_path / "blocklist.yaml"
    path.write_text("patterns:\n  - \"tracker\\\\.test\"\n")
    assert load_blocklist(str(path)) == ["tracker\\.test"]


def test_load_blocklist_errors(tmp_path):
    with pytest.raises(ConfigurationError):
        load_blocklist(str(tmp_path / "missing.yaml"))

    path = tmp_path / "bad.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigurationError) as excinfo:
        load_blocklist(str(path))
    assert "'patterns' list" in str(excinfo.value)


def test_from_config():
    config = MagicMock()
    config.get.side_effect = lambda key, default=None: {
        "request_filter.max_elapsed_seconds": 5,
        "request_filter.max_requests": 10,
    }.get(key, default)

    request_filter = RequestFilter.from_config(config)

    assert request_filter.max_elapsed_seconds == 5.0
    assert request_filter.max_requests == 10
    assert request_filter.is_blocked("https://connect.facebook.net/sdk.js")
