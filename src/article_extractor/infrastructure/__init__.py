"""
Infrastructure Package.

Provides the Playwright browser backend and the anti-detection measures
applied to every page load.
"""

from .anti_detection import (
    COMBINED_STEALTH_SCRIPT,
    STEALTH_SCRIPTS,
    RetryDelay,
    RetryDelayConfig,
    build_request_filter,
    spoofed_headers,
)
from .browser_backend import (
    BrowserPage,
    PlaywrightBackend,
    cookie_to_playwright,
    is_timeout_error,
)

__all__ = [
    "COMBINED_STEALTH_SCRIPT",
    "STEALTH_SCRIPTS",
    "RetryDelay",
    "RetryDelayConfig",
    "build_request_filter",
    "spoofed_headers",
    "BrowserPage",
    "PlaywrightBackend",
    "cookie_to_playwright",
    "is_timeout_error",
]
