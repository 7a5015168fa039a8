"""
Session component: one open page per URL and the bounded, expiring cache
that keeps finished pages around for reuse.
"""
from .session import Session, Viewport, NavigationState
from .session_cache import SessionCache, DisposalResult, dispose_session

__all__ = [
    "Session",
    "Viewport",
    "NavigationState",
    "SessionCache",
    "DisposalResult",
    "dispose_session",
]
