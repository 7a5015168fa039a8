"""
Actions component: screenshot, HTML snapshot and PDF generation.
"""
from .dispatcher import ActionDispatcher
from .sanitizer import sanitize_html
from .thumbnail import make_thumbnail

__all__ = [
    "ActionDispatcher",
    "sanitize_html",
    "make_thumbnail",
]
