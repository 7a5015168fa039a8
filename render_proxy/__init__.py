"""
Render Proxy: serves screenshots, HTML snapshots and PDFs of web pages
rendered in a shared headless Chromium instance.
"""

__version__ = "0.1.0"
