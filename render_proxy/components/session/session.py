"""
The Session model: one open browser page bound to a source URL.
"""
import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from playwright.async_api import Page


class NavigationState(str, Enum):
    """Navigation progress of a session, driven by the navigation controller."""
    PREFLIGHT = "preflight"
    NAVIGATING = "navigating"
    REDIRECT_DETECTED = "redirect-detected"
    IDLE_SETTLED = "idle-settled"
    FAILED = "failed"


@dataclass
class Viewport:
    width: int = 1024
    height: int = 768

    def as_dict(self) -> dict:
        return {"width": self.width, "height": self.height}


@dataclass
class Session:
    """
    One browser page exclusively owned by one cache key.

    Attributes:
        key (str): The decoded page URL as supplied by the caller. Never normalized.
        page (Page): The Playwright page. Only the cache (or the failure path, after
                     removing the entry) may close it.
        viewport (Viewport): Last viewport applied to the page.
        created_at (float): `time.monotonic()` at creation; the navigation time budget
                            is measured from here.
        request_count (int): Sub-resource requests allowed through the filter so far.
        action_done (bool): Set once an action completed; the filter then aborts everything.
        state (NavigationState): Current navigation state.
        closed (bool): True once the session has been destroyed.
        lock (asyncio.Lock): Serializes actions against this page.
    """
    key: str
    page: Page
    viewport: Viewport = field(default_factory=Viewport)
    created_at: float = field(default_factory=time.monotonic)
    request_count: int = 0
    action_done: bool = False
    state: NavigationState = NavigationState.PREFLIGHT
    closed: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    listeners: List[Tuple[str, Callable[..., Any]]] = field(default_factory=list, repr=False)

    def elapsed_seconds(self, now: Optional[float] = None) -> float:
        """Seconds since the session was created."""
        return (now if now is not None else time.monotonic()) - self.created_at

    def add_listener(self, event: str, handler: Callable[..., Any]) -> None:
        """Registers a page event handler and remembers it so disposal can detach it."""
        self.page.on(event, handler)
        self.listeners.append((event, handler))

    def remove_listeners(self) -> None:
        while self.listeners:
            event, handler = self.listeners.pop()
            self.page.remove_listener(event, handler)

    async def set_viewport(self, width: int, height: int) -> None:
        self.viewport = Viewport(width=width, height=height)
        await self.page.set_viewport_size(self.viewport.as_dict())
