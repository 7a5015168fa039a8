from typing import List

from pydantic import BaseModel


class ProcessInfo(BaseModel):
    """
    Diagnostics about the serving process.
    """
    python: str
    platform: str
    pid: int
    max_rss_kb: int


class StatusResponse(BaseModel):
    """
    Response model for `/status`: the URLs with a live cached session, least
    recently used first, and process diagnostics.
    """
    pages: List[str]
    process: ProcessInfo
