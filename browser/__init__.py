"""
Browser Automation Module - Playwright implementation of the Page Automation Surface.

The page-context worker (worker.js) lives next to this module and is
injected into tabs by script reference.

Environment Variables Used:
    BROWSER_HEADLESS - Run Chromium headless (default false; the operator watches the tabs)
    BROWSER_USER_DATA_DIR - Persistent profile directory holding the job-site login
"""

from browser.playwright_surface import (
    PlaywrightTabSurface,
    WORKER_DIR,
    ANNOUNCE_BINDING,
)

__all__ = [
    "PlaywrightTabSurface",
    "WORKER_DIR",
    "ANNOUNCE_BINDING",
]
