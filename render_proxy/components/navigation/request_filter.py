"""
Per-request traffic filter for pages loaded by the proxy.

`RequestFilter.decide` is a pure function of a `RequestEvent`; the only side
effect of the filter as a whole is the request counter increment performed by
`RequestFilter.evaluate` when a request is allowed. `RequestFilter.install`
binds the filter to a session's page through Playwright request interception.
"""
import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Pattern

import yaml
from playwright.async_api import Route

from render_proxy.components.session.session import Session
from render_proxy.core.exceptions import ConfigurationError
from render_proxy.core.logger import get_logger

logger = get_logger(__name__)

CONFIG_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "..", "config")
DEFAULT_BLOCKLIST_FILE = "blocklist.yaml"

NON_ESSENTIAL_RESOURCE_TYPES = frozenset({"manifest", "other"})


class Decision(str, Enum):
    ALLOW = "allow"
    ABORT_BUDGET = "abort-budget"
    ABORT_BLOCKED = "abort-blocked"

    @property
    def allowed(self) -> bool:
        return self is Decision.ALLOW


@dataclass(frozen=True)
class RequestEvent:
    """One outgoing sub-resource request observed while interception is active."""
    url: str
    method: str
    resource_type: str
    elapsed_seconds: float
    request_count: int
    action_done: bool


def truncate(text: str, length: int = 70) -> str:
    return text[:length] + "…" if len(text) > length else text


def is_data_uri(url: str) -> bool:
    return url[:5].lower() == "data:"


def compile_blocklist(patterns: Iterable[str]) -> Optional[Pattern[str]]:
    """Joins regex fragments into one case-insensitive alternation. None if there are none."""
    fragments = [p for p in patterns if p]
    if not fragments:
        return None
    try:
        return re.compile("(" + "|".join(fragments) + ")", re.IGNORECASE)
    except re.error as e:
        raise ConfigurationError(f"Invalid blocklist pattern: {e}")


def load_blocklist(path: Optional[str] = None) -> List[str]:
    """
    Reads blocklist fragments from a YAML file with a top-level `patterns` list.
    Relative paths are resolved against the package's config directory.
    """
    path = path or DEFAULT_BLOCKLIST_FILE
    if not os.path.isabs(path):
        path = os.path.join(CONFIG_DIR, path)
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigurationError(f"Blocklist file not found at '{path}'.")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Error parsing blocklist '{path}': {e}")
    patterns = data.get("patterns") if isinstance(data, dict) else None
    if not isinstance(patterns, list):
        raise ConfigurationError(f"Blocklist '{path}' must contain a 'patterns' list.")
    return [str(p) for p in patterns]


class RequestFilter:
    """
    Allow/abort policy for sub-resource requests.

    Attributes:
        max_elapsed_seconds (float): Requests issued later than this after the session
                                     was created are aborted.
        max_requests (int): Once more than this many requests were allowed, further ones
                            are aborted.
    """
    DEFAULT_MAX_ELAPSED_SECONDS = 15.0
    DEFAULT_MAX_REQUESTS = 100

    def __init__(
        self,
        blocklist: Iterable[str] = (),
        max_elapsed_seconds: float = DEFAULT_MAX_ELAPSED_SECONDS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
    ):
        self.blocked_pattern = compile_blocklist(blocklist)
        self.max_elapsed_seconds = max_elapsed_seconds
        self.max_requests = max_requests

    @classmethod
    def from_config(cls, config) -> "RequestFilter":
        if config is None:
            return cls(blocklist=load_blocklist())
        return cls(
            blocklist=load_blocklist(config.get("request_filter.blocklist_file", DEFAULT_BLOCKLIST_FILE)),
            max_elapsed_seconds=float(config.get("request_filter.max_elapsed_seconds", cls.DEFAULT_MAX_ELAPSED_SECONDS)),
            max_requests=int(config.get("request_filter.max_requests", cls.DEFAULT_MAX_REQUESTS)),
        )

    def is_blocked(self, url: str) -> bool:
        return self.blocked_pattern is not None and self.blocked_pattern.search(url) is not None

    def decide(self, event: RequestEvent) -> Decision:
        if is_data_uri(event.url):
            return Decision.ALLOW
        if (
            event.elapsed_seconds > self.max_elapsed_seconds
            or event.request_count > self.max_requests
            or event.action_done
        ):
            return Decision.ABORT_BUDGET
        if self.is_blocked(event.url) or event.resource_type.lower() in NON_ESSENTIAL_RESOURCE_TYPES:
            return Decision.ABORT_BLOCKED
        return Decision.ALLOW

    def evaluate(self, session: Session, url: str, method: str, resource_type: str) -> Decision:
        """Decides for one request of `session`, counting it if it is allowed."""
        event = RequestEvent(
            url=url,
            method=method,
            resource_type=resource_type,
            elapsed_seconds=session.elapsed_seconds(),
            request_count=session.request_count,
            action_done=session.action_done,
        )
        decision = self.decide(event)
        short_url = truncate(url)
        if decision is Decision.ALLOW:
            if not is_data_uri(url):
                session.request_count += 1
                logger.debug(f"Allowed {method} {short_url}")
        elif decision is Decision.ABORT_BUDGET:
            logger.debug(f"Aborted (budget) {method} {short_url}")
        else:
            logger.debug(f"Aborted (blocked) {method} {short_url}")
        return decision

    async def install(self, session: Session) -> None:
        """
        Routes every request of the session's page through this filter. Stays installed
        for the life of the page, including while it idles in the cache.
        """
        async def _route_handler(route: Route) -> None:
            request = route.request
            decision = self.evaluate(session, request.url, request.method, request.resource_type)
            try:
                if decision.allowed:
                    await route.continue_()
                else:
                    await route.abort("blockedbyclient")
            except Exception as e:
                # The page may already be closing; the request is moot then.
                logger.debug(f"Route for {truncate(request.url)} could not be resolved: {e}")

        await session.page.route("**/*", _route_handler)
