"""
Components sub-package for the Render Proxy.

Each sub-package owns one stage of serving a request: `session` (the session
type and its cache), `browser` (the shared Chromium process), `navigation`
(preflight, request filtering and page loading) and `actions` (producing the
screenshot, snapshot or PDF).
"""

# Ordered so that each sub-package only depends on the ones imported before it.
from .session.session import Session, Viewport, NavigationState
from .session.session_cache import SessionCache, DisposalResult, dispose_session
from .browser.browser_manager import BrowserManager
from .navigation.request_filter import RequestFilter, Decision
from .navigation.preflight import ContentTypePreflight
from .navigation.navigator import NavigationController
from .actions.dispatcher import ActionDispatcher

__all__ = [
    "Session",
    "Viewport",
    "NavigationState",
    "SessionCache",
    "DisposalResult",
    "dispose_session",
    "BrowserManager",
    "RequestFilter",
    "Decision",
    "ContentTypePreflight",
    "NavigationController",
    "ActionDispatcher",
]
