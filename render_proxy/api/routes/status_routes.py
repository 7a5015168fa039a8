"""
Operational endpoints: `/status` and `/favicon.ico`.
"""
import os
import platform
import resource
import sys

from fastapi import APIRouter, Depends, Response, status

from render_proxy.api.dependencies import get_rendering_manager
from render_proxy.api.models import ProcessInfo, StatusResponse
from render_proxy.core.manager import RenderingManager

router = APIRouter()


def process_info() -> ProcessInfo:
    # ru_maxrss is reported in kilobytes on Linux.
    usage = resource.getrusage(resource.RUSAGE_SELF)
    return ProcessInfo(
        python=sys.version.split()[0],
        platform=platform.platform(),
        pid=os.getpid(),
        max_rss_kb=usage.ru_maxrss,
    )


@router.get("/status", response_model=StatusResponse, summary="Cached pages and process diagnostics")
async def get_status(manager: RenderingManager = Depends(get_rendering_manager)):
    return StatusResponse(pages=manager.cached_urls(), process=process_info())


@router.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=status.HTTP_204_NO_CONTENT)
