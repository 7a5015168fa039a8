"""
Custom exception classes for the Render Proxy.

Every failure raised by the core derives from `RenderProxyError` so the request
boundary can convert it into the uniform 400 response carrying `message`.
"""
import re
from typing import Optional

# Playwright/driver messages that mean the browser process itself is unusable.
TRANSPORT_FATAL_PATTERN = re.compile(
    r"not opened|connection closed",
    re.IGNORECASE,
)


class RenderProxyError(Exception):
    """
    Base class for all custom exceptions in the Render Proxy.

    Attributes:
        message (str): A human-readable description of the error.
    """
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# --- Configuration Related Exceptions ---
class ConfigurationError(RenderProxyError):
    """Raised for errors related to application configuration (e.g., an unreadable blocklist)."""
    def __init__(self, message: str):
        super().__init__(message)


# --- Input Validation ---
class InputValidationError(RenderProxyError):
    """Raised before any session is involved, for malformed requests."""
    pass


class MissingURLError(InputValidationError):
    """Raised when the `url` parameter is absent."""
    def __init__(self):
        super().__init__("Something is wrong. Missing url parameter.")


class InvalidURLError(InputValidationError):
    """Raised when the page URL is not an http(s) URL."""
    def __init__(self, url: str):
        super().__init__(f"Invalid URL: {url}")
        self.url = url


# --- Preflight ---
class NotHTMLPageError(RenderProxyError):
    """Raised when the content-type preflight shows the target is not an HTML document."""
    def __init__(self, url: str, content_type: Optional[str] = None):
        super().__init__("Not a HTML page")
        self.url = url
        self.content_type = content_type


# --- Navigation ---
class NavigationError(RenderProxyError):
    """Raised when loading a page into a fresh session fails."""
    pass


class RedirectLoopError(NavigationError):
    """Raised when a response redirects back through the proxy's own host."""
    def __init__(self, location: str):
        super().__init__("Possible infinite redirects detected.")
        self.location = location


class BrowserLaunchError(NavigationError):
    """Raised when the browser engine cannot be started. Launch is never retried automatically."""
    def __init__(self, message: str):
        super().__init__(f"Failed to launch browser: {message}")


# --- Actions ---
class ActionError(RenderProxyError):
    """Raised when producing a screenshot, HTML snapshot or PDF fails."""
    def __init__(self, action: str, message: str):
        super().__init__(message)
        self.action = action


class ActionTimeoutError(ActionError):
    """Raised when an action exceeds its time box ("Screenshot timed out", ...)."""
    def __init__(self, action: str, label: str):
        super().__init__(action, label)


class UnsupportedActionError(InputValidationError):
    """Raised for an action name outside screenshot/render/pdf."""
    def __init__(self, action: str):
        super().__init__(f"Unsupported action: {action}")
        self.action = action


# --- Transport ---
class BrowserTransportError(RenderProxyError):
    """
    Raised when the browser control channel is gone. The browser singleton must be
    killed so the next request relaunches it.
    """
    pass


def is_transport_fatal(message: str) -> bool:
    """True when an error message carries the browser control-channel failure signature."""
    return bool(message) and TRANSPORT_FATAL_PATTERN.search(message) is not None
