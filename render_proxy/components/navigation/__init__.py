"""
Navigation component.

Checks that a URL serves HTML before a page is opened for it, filters the
sub-requests a page makes while loading, and drives the page to network idle
while watching for redirects back through the proxy.
"""
from .request_filter import RequestFilter, RequestEvent, Decision
from .preflight import ContentTypePreflight, validate_page_url
from .navigator import NavigationController

__all__ = [
    "RequestFilter",
    "RequestEvent",
    "Decision",
    "ContentTypePreflight",
    "validate_page_url",
    "NavigationController",
]
