"""
Browser component: launches, shares and restarts the Chromium instance.
"""
from .browser_manager import BrowserManager

__all__ = [
    "BrowserManager",
]
