from .config import get_config, config_manager, ConfigurationManager, ConfigError, ConfigFileNotFoundError, InvalidYamlError
from .exceptions import (
    RenderProxyError,
    ConfigurationError,
    InputValidationError,
    MissingURLError,
    InvalidURLError,
    UnsupportedActionError,
    NotHTMLPageError,
    NavigationError,
    RedirectLoopError,
    BrowserLaunchError,
    ActionError,
    ActionTimeoutError,
    BrowserTransportError,
    is_transport_fatal,
)
from .logger import setup_logging, get_logger
from .models import RenderRequest, RenderResult

# RenderingManager is imported from `render_proxy.core.manager` directly; it depends on
# the components package, which itself imports from this package.

__all__ = [
    # Config
    "get_config",
    "config_manager",
    "ConfigurationManager",
    "ConfigError",
    "ConfigFileNotFoundError",
    "InvalidYamlError",
    # Logger
    "setup_logging",
    "get_logger",
    # Exceptions
    "RenderProxyError",
    "ConfigurationError",
    "InputValidationError",
    "MissingURLError",
    "InvalidURLError",
    "UnsupportedActionError",
    "NotHTMLPageError",
    "NavigationError",
    "RedirectLoopError",
    "BrowserLaunchError",
    "ActionError",
    "ActionTimeoutError",
    "BrowserTransportError",
    "is_transport_fatal",
    # Models
    "RenderRequest",
    "RenderResult",
]
