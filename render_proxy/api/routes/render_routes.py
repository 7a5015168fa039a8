"""
API routes that produce page artifacts.

`GET /{screenshot|render|pdf}?url=...` renders the page and returns the
artifact; `GET /?url=...` is a screenshot. Query parameter names are camelCase
and numeric parameters are parsed leniently: anything unparsable or zero falls
back to the default.
"""
import os
import re
from typing import Mapping, Optional
from urllib.parse import unquote

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, Response

from render_proxy.api.dependencies import get_rendering_manager
from render_proxy.core.exceptions import MissingURLError
from render_proxy.core.logger import get_logger
from render_proxy.core.manager import RenderingManager
from render_proxy.core.models import SCREENSHOT, RenderRequest, RenderResult

logger = get_logger(__name__)

router = APIRouter()

LONG_CACHE_CONTROL = "public,max-age=31536000"
INDEX_PAGE = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "..", "static", "index.html")

LEADING_INT_PATTERN = re.compile(r"^\s*([+-]?\d+)")


def parse_int(value: Optional[str], default: Optional[int]) -> Optional[int]:
    """
    Reads the leading integer of `value` ("800px" is 800). Returns `default`
    when there is none or when it is zero.
    """
    if not value:
        return default
    match = LEADING_INT_PATTERN.match(value)
    if not match:
        return default
    return int(match.group(1)) or default


def parse_flag(value: Optional[str]) -> bool:
    return value == "true"


def build_render_request(action: str, params: Mapping[str, str]) -> RenderRequest:
    """
    Builds a RenderRequest from query parameters.

    Raises:
        MissingURLError: If `url` is absent or empty.
    """
    encoded_url = params.get("url")
    if not encoded_url:
        raise MissingURLError()

    defaults = RenderRequest(url="")
    return RenderRequest(
        url=unquote(encoded_url),
        action=action,
        width=parse_int(params.get("width"), defaults.width),
        height=parse_int(params.get("height"), defaults.height),
        navigation_timeout=parse_int(params.get("navigationTimeout"), defaults.navigation_timeout),
        action_timeout=parse_int(params.get("actionTimeout"), defaults.action_timeout),
        raw=bool(params.get("raw")),
        format=params.get("format") or defaults.format,
        landscape=parse_flag(params.get("landscape")),
        page_ranges=params.get("pageRanges") or None,
        image_type=params.get("imageType") or defaults.image_type,
        thumb_width=parse_int(params.get("thumbWidth"), None),
        jpeg_quality=parse_int(params.get("jpegQuality"), defaults.jpeg_quality),
        full_page=parse_flag(params.get("fullPage")),
        clip_selector=params.get("clipSelector") or None,
    )


def to_response(result: RenderResult) -> Response:
    headers = {"cache-control": LONG_CACHE_CONTROL} if result.ok else None
    return Response(
        content=result.body,
        status_code=result.status_code,
        media_type=result.content_type,
        headers=headers,
    )


async def _render(action: str, request: Request, manager: RenderingManager) -> Response:
    render_request = build_render_request(action, request.query_params)
    logger.info(f"{action} request for {render_request.url}")
    result = await manager.handle(render_request, proxy_host=request.headers.get("host"))
    return to_response(result)


@router.get("/", summary="Landing page, or a screenshot when `url` is given")
async def index(request: Request, manager: RenderingManager = Depends(get_rendering_manager)):
    if not request.url.query:
        with open(INDEX_PAGE, "rb") as f:
            content = f.read()
        return HTMLResponse(content=content, headers={"cache-control": LONG_CACHE_CONTROL})
    return await _render(SCREENSHOT, request, manager)


@router.get("/{action}", summary="Render a page as a screenshot, HTML snapshot or PDF")
async def render_action(action: str, request: Request, manager: RenderingManager = Depends(get_rendering_manager)):
    """
    Handles `/screenshot`, `/render` and `/pdf`. Any other action name is rejected
    with a 400 by the rendering manager before a page is opened.
    """
    return await _render(action.lower(), request, manager)
