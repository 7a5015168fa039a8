"""
Request and result types exchanged between the HTTP layer and the rendering core.
"""
from dataclasses import dataclass
from typing import Optional

SCREENSHOT = "screenshot"
RENDER = "render"
PDF = "pdf"
ACTIONS = (SCREENSHOT, RENDER, PDF)

FAILURE_PREFIX = "Oops. Something is wrong.\n\n"


@dataclass
class RenderRequest:
    """
    One request for an artifact of `url`.

    Timeouts are in milliseconds. `navigation_timeout` of 0 leaves navigation
    unbounded; `action_timeout` of 0 uses the configured default
    (`actions.default_timeout_ms`, 10000). Options not relevant to `action`
    are ignored.
    """
    url: str
    action: str = SCREENSHOT
    width: int = 1024
    height: int = 768
    navigation_timeout: int = 0
    action_timeout: int = 0
    # render
    raw: bool = False
    # pdf
    format: str = "A4"
    landscape: bool = False
    page_ranges: Optional[str] = None
    # screenshot
    image_type: str = "png"
    thumb_width: Optional[int] = None
    jpeg_quality: int = 90
    full_page: bool = False
    clip_selector: Optional[str] = None


@dataclass
class RenderResult:
    """Outcome of one request: either the artifact bytes or a plain-text failure."""
    status_code: int
    content_type: str
    body: bytes

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @classmethod
    def failure(cls, message: str) -> "RenderResult":
        return cls(
            status_code=400,
            content_type="text/plain",
            body=(FAILURE_PREFIX + (message or "")).encode("utf-8"),
        )
