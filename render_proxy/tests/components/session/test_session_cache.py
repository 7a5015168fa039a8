import asyncio

import pytest
from unittest.mock import AsyncMock

from render_proxy.components.session.session_cache import DisposalResult, SessionCache, dispose_session


def recording_disposer():
    """AsyncMock disposer that reports success and records (session, reason) calls."""
    async def _dispose(session, reason):
        return DisposalResult(key=session.key, reason=reason, ok=True)
    return AsyncMock(side_effect=_dispose)


@pytest.fixture
def disposer():
    return recording_disposer()


@pytest.fixture
def cache(disposer, clock):
    return SessionCache(max_size=2, ttl_seconds=60, disposer=disposer, clock=clock)


def test_max_size_must_be_positive():
    with pytest.raises(ValueError):
        SessionCache(max_size=0)


@pytest.mark.asyncio
async def test_capacity_evicts_least_recently_used(cache, disposer, session_factory):
    a, b, c = (session_factory(f"http://{name}.test/") for name in "abc")
    assert await cache.set(a.key, a)
    assert await cache.set(b.key, b)

    assert await cache.set(c.key, c)

    assert len(cache) == 2
    assert cache.keys() == [b.key, c.key]
    disposer.assert_awaited_once_with(a, "capacity")


@pytest.mark.asyncio
async def test_get_refreshes_recency(cache, disposer, session_factory):
    a, b, c = (session_factory(f"http://{name}.test/") for name in "abc")
    await cache.set(a.key, a)
    await cache.set(b.key, b)

    assert await cache.get(a.key) is a
    await cache.set(c.key, c)

    disposer.assert_awaited_once_with(b, "capacity")
    assert cache.has(a.key)


@pytest.mark.asyncio
async def test_size_never_exceeds_bound(disposer, clock, session_factory):
    cache = SessionCache(max_size=3, ttl_seconds=60, disposer=disposer, clock=clock)
    for i in range(10):
        session = session_factory(f"http://site{i}.test/")
        await cache.set(session.key, session)
        assert len(cache) <= 3
    assert disposer.await_count == 7


@pytest.mark.asyncio
async def test_expired_entry_is_disposed_exactly_once(cache, disposer, clock, session_factory):
    session = session_factory()
    await cache.set(session.key, session)
    clock.advance(61)

    assert not cache.has(session.key)
    assert await cache.get(session.key) is None
    assert await cache.get(session.key) is None
    assert await cache.prune() == []

    disposer.assert_awaited_once_with(session, "expired")
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_get_does_not_extend_ttl(cache, clock, session_factory):
    session = session_factory()
    await cache.set(session.key, session)
    clock.advance(40)
    assert await cache.get(session.key) is session
    clock.advance(30)
    assert await cache.get(session.key) is None


@pytest.mark.asyncio
async def test_set_refuses_second_live_session_for_key(cache, disposer, session_factory):
    first = session_factory("http://example.com/")
    second = session_factory("http://example.com/")

    assert await cache.set(first.key, first) is True
    assert await cache.set(second.key, second) is False

    assert await cache.get(first.key) is first
    disposer.assert_not_awaited()


@pytest.mark.asyncio
async def test_set_same_session_refreshes_ttl(cache, clock, session_factory):
    session = session_factory()
    await cache.set(session.key, session)
    clock.advance(50)
    assert await cache.set(session.key, session) is True
    clock.advance(50)
    assert cache.holds(session.key, session)


@pytest.mark.asyncio
async def test_set_replaces_expired_entry(cache, disposer, clock, session_factory):
    old = session_factory("http://example.com/")
    new = session_factory("http://example.com/")
    await cache.set(old.key, old)
    clock.advance(61)

    assert await cache.set(new.key, new) is True

    disposer.assert_awaited_once_with(old, "expired")
    assert cache.holds(new.key, new)


@pytest.mark.asyncio
async def test_prune_disposes_only_expired(cache, disposer, clock, session_factory):
    old = session_factory("http://old.test/")
    await cache.set(old.key, old)
    clock.advance(30)
    fresh = session_factory("http://fresh.test/")
    await cache.set(fresh.key, fresh)
    clock.advance(31)

    results = await cache.prune()

    assert [r.key for r in results] == [old.key]
    assert cache.keys() == [fresh.key]


@pytest.mark.asyncio
async def test_delete_and_discard(cache, disposer, session_factory):
    a = session_factory("http://a.test/")
    b = session_factory("http://b.test/")
    await cache.set(a.key, a)
    await cache.set(b.key, b)

    result = await cache.delete(a.key)
    assert result.reason == "deleted"
    assert await cache.delete(a.key) is None

    other = session_factory("http://b.test/")
    assert cache.discard(b.key, other) is False
    assert cache.discard(b.key, b) is True
    assert len(cache) == 0
    # discard hands ownership back without disposing
    assert disposer.await_count == 1


@pytest.mark.asyncio
async def test_disposer_failure_does_not_break_cache(clock, session_factory):
    disposer = AsyncMock(side_effect=RuntimeError("page crashed"))
    cache = SessionCache(max_size=1, ttl_seconds=60, disposer=disposer, clock=clock)
    a = session_factory("http://a.test/")
    b = session_factory("http://b.test/")
    await cache.set(a.key, a)

    assert await cache.set(b.key, b) is True

    assert cache.keys() == [b.key]
    result = await cache.delete(b.key)
    assert result.ok is False
    assert "page crashed" in result.error


@pytest.mark.asyncio
async def test_clear_disposes_everything(cache, disposer, session_factory):
    a = session_factory("http://a.test/")
    b = session_factory("http://b.test/")
    await cache.set(a.key, a)
    await cache.set(b.key, b)

    results = await cache.clear()

    assert {r.key for r in results} == {a.key, b.key}
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_periodic_prune(cache, disposer, clock, session_factory):
    session = session_factory()
    await cache.set(session.key, session)
    clock.advance(61)

    task = cache.start_pruning(0.01)
    assert cache.start_pruning(0.01) is task
    await asyncio.sleep(0.05)
    await cache.stop_pruning()

    disposer.assert_awaited_once_with(session, "expired")
    assert task.done()


# --- dispose_session ---

@pytest.mark.asyncio
async def test_dispose_session_closes_page_in_order(session_factory):
    session = session_factory()
    handler = lambda response: None
    session.add_listener("response", handler)
    page = session.page

    result = await dispose_session(session)

    assert result.ok
    assert session.closed
    page.remove_listener.assert_called_once_with("response", handler)
    page.unroute_all.assert_awaited_once_with(behavior="ignoreErrors")
    page.context.clear_cookies.assert_awaited_once()
    page.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_dispose_session_is_idempotent(session_factory):
    session = session_factory()
    await dispose_session(session)
    await dispose_session(session)
    session.page.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_dispose_session_reports_errors_without_raising(session_factory):
    session = session_factory()
    session.page.unroute_all.side_effect = RuntimeError("Target closed")
    session.page.close.side_effect = RuntimeError("Target closed")

    result = await dispose_session(session, "failed", clear_cookies=False)

    assert result.ok is False
    assert result.error.startswith("detach:")
    session.page.context.clear_cookies.assert_not_awaited()
    session.page.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_expired_session_in_use_is_not_disposed(cache, disposer, clock, session_factory):
    busy = session_factory("http://busy.test/")
    await cache.set(busy.key, busy)
    clock.advance(61)

    async with busy.lock:
        assert await cache.prune() == []
        assert await cache.get(busy.key) is None
        replacement = session_factory(busy.key)
        assert await cache.set(replacement.key, replacement) is False
        disposer.assert_not_awaited()

    results = await cache.prune()
    assert [r.key for r in results] == [busy.key]
    disposer.assert_awaited_once_with(busy, "expired")
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_owns_ignores_expiry(cache, clock, session_factory):
    session = session_factory()
    await cache.set(session.key, session)
    clock.advance(61)

    assert cache.owns(session.key, session)
    assert not cache.holds(session.key, session)
    assert not cache.owns(session.key, session_factory())
