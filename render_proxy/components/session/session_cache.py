"""
Bounded, time-expiring cache of live browser sessions.

The `SessionCache` owns disposal of every session it holds: capacity pressure,
TTL expiry (on lookup and from the periodic sweep) and explicit deletion all
run the same disposal hook, and the hook never raises into the cache's
control flow. Its outcome is reported as a `DisposalResult` and logged.
"""
import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from render_proxy.components.session.session import Session
from render_proxy.core.logger import get_logger

logger = get_logger(__name__)


@dataclass
class DisposalResult:
    """Outcome of destroying one session."""
    key: str
    reason: str
    ok: bool
    error: Optional[str] = None


async def dispose_session(session: Session, reason: str = "evicted", clear_cookies: bool = True) -> DisposalResult:
    """
    Destroys a session: detach listeners and routes, clear cookies, close the page.

    The order is fixed. Every step is attempted even if an earlier one failed;
    the first failure is reported in the result. Calling it twice on the same
    session is a no-op the second time.
    """
    if session.closed:
        return DisposalResult(key=session.key, reason=reason, ok=True)
    session.closed = True
    logger.info(f"Disposing session for {session.key} ({reason}).")

    errors: List[str] = []
    page = session.page
    try:
        session.remove_listeners()
        await page.unroute_all(behavior="ignoreErrors")
    except Exception as e:
        errors.append(f"detach: {e}")
    if clear_cookies:
        try:
            await page.context.clear_cookies()
        except Exception as e:
            errors.append(f"cookies: {e}")
    try:
        await page.close()
    except Exception as e:
        errors.append(f"close: {e}")

    if errors:
        logger.warning(f"Session for {session.key} was not fully disposed, resources may leak: {'; '.join(errors)}")
        return DisposalResult(key=session.key, reason=reason, ok=False, error=errors[0])
    return DisposalResult(key=session.key, reason=reason, ok=True)


@dataclass
class _CacheEntry:
    session: Session
    expires_at: float


class SessionCache:
    """
    LRU map from page URL to `Session` with per-entry TTL.

    Lookups refresh recency but not the TTL; an insert sets the TTL. At most one
    session is stored per key: `set` refuses to replace a live entry held by a
    different session. An expired entry whose session lock is held stays put
    until the request holding it is done; the next lookup or sweep disposes it.

    Attributes:
        max_size (int): Maximum number of resident sessions.
        ttl_seconds (float): Lifetime of an entry after insertion.
    """
    DEFAULT_MAX_SIZE = 20
    DEFAULT_TTL_SECONDS = 60.0

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        disposer: Callable[[Session, str], Awaitable[DisposalResult]] = dispose_session,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("SessionCache max_size must be at least 1.")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._disposer = disposer
        self._clock = clock
        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._prune_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    def _is_live(self, entry: _CacheEntry) -> bool:
        return entry.expires_at > self._clock()

    async def _dispose(self, session: Session, reason: str) -> DisposalResult:
        try:
            result = await self._disposer(session, reason)
        except Exception as e:
            logger.error(f"Disposal hook raised for {session.key}: {e}", exc_info=True)
            result = DisposalResult(key=session.key, reason=reason, ok=False, error=str(e))
        return result

    def has(self, key: str) -> bool:
        """True if a live (unexpired) entry exists for `key`. Does not touch recency."""
        entry = self._entries.get(key)
        return entry is not None and self._is_live(entry)

    def holds(self, key: str, session: Session) -> bool:
        """True if the live entry for `key` is exactly `session`."""
        entry = self._entries.get(key)
        return entry is not None and entry.session is session and self._is_live(entry)

    def owns(self, key: str, session: Session) -> bool:
        """True if the entry for `key` is exactly `session`, expired or not."""
        entry = self._entries.get(key)
        return entry is not None and entry.session is session

    def keys(self) -> List[str]:
        """Live keys, least recently used first."""
        return [key for key, entry in self._entries.items() if self._is_live(entry)]

    async def get(self, key: str) -> Optional[Session]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not self._is_live(entry):
            if not entry.session.lock.locked():
                del self._entries[key]
                await self._dispose(entry.session, "expired")
            return None
        self._entries.move_to_end(key)
        return entry.session

    async def set(self, key: str, session: Session) -> bool:
        """
        Stores `session` under `key` unless a different live session already holds it.

        Returns:
            bool: True if the session is now resident, False if the insert was refused.
                  A refused session is not disposed here; the caller still owns it.
        """
        existing = self._entries.get(key)
        if existing is not None:
            if existing.session is session:
                existing.expires_at = self._clock() + self.ttl_seconds
                self._entries.move_to_end(key)
                return True
            if self._is_live(existing) or existing.session.lock.locked():
                return False
            del self._entries[key]
            await self._dispose(existing.session, "expired")

        while len(self._entries) >= self.max_size:
            victim_key, victim = self._entries.popitem(last=False)
            await self._dispose(victim.session, "capacity")

        # Another coroutine may have claimed the key while disposals were awaited.
        if self.has(key):
            return False
        self._entries[key] = _CacheEntry(session=session, expires_at=self._clock() + self.ttl_seconds)
        logger.debug(f"Cached session for {key} ({len(self._entries)}/{self.max_size}).")
        return True

    async def delete(self, key: str) -> Optional[DisposalResult]:
        entry = self._entries.pop(key, None)
        if entry is None:
            return None
        return await self._dispose(entry.session, "deleted")

    def discard(self, key: str, session: Session) -> bool:
        """
        Removes the entry for `key` only if it holds `session`, without disposing it.
        Used by the failure path, which destroys the session itself.
        """
        entry = self._entries.get(key)
        if entry is not None and entry.session is session:
            del self._entries[key]
            return True
        return False

    async def prune(self) -> List[DisposalResult]:
        """Disposes every expired entry that no request is using."""
        expired = [
            key for key, entry in self._entries.items()
            if not self._is_live(entry) and not entry.session.lock.locked()
        ]
        results = []
        for key in expired:
            entry = self._entries.pop(key, None)
            if entry is not None:
                results.append(await self._dispose(entry.session, "expired"))
        if results:
            logger.info(f"Pruned {len(results)} expired session(s).")
        return results

    async def clear(self) -> List[DisposalResult]:
        """Disposes every entry, expired or not."""
        results = []
        while self._entries:
            _, entry = self._entries.popitem(last=False)
            results.append(await self._dispose(entry.session, "shutdown"))
        return results

    async def _prune_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.prune()
            except Exception as e:
                logger.error(f"Session cache prune failed: {e}", exc_info=True)

    def start_pruning(self, interval_seconds: float = 60.0) -> asyncio.Task:
        """Starts the periodic sweep on the running loop. Calling it again is a no-op."""
        if self._prune_task is None or self._prune_task.done():
            self._prune_task = asyncio.create_task(self._prune_forever(interval_seconds))
        return self._prune_task

    async def stop_pruning(self) -> None:
        task, self._prune_task = self._prune_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

