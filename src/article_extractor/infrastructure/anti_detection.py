"""
Anti-detection helpers for browser page loads.

Provides the pieces the PageLoader installs on a page before navigation:
- Stealth init script hiding automation signals (navigator.webdriver, ...)
- Request filter predicate blocking heavy resources and trackers
- Spoofed request headers
- Randomized delay between navigation attempts
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from article_extractor.constants import (
    ANTI_DETECTION_HEADERS,
    BLOCKED_RESOURCE_TYPES,
    RETRY_DELAY_MAX_SECONDS,
    RETRY_DELAY_MIN_SECONDS,
    TRACKER_URL_MARKERS,
)

logger = logging.getLogger(__name__)


# Stealth JavaScript to inject into pages
STEALTH_SCRIPTS = {
    "webdriver": """
        // Hide navigator.webdriver
        Object.defineProperty(navigator, 'webdriver', {
            get: () => undefined,
            configurable: true
        });
    """,
    "languages": """
        Object.defineProperty(navigator, 'languages', {
            get: () => ['en-US', 'en'],
            configurable: true
        });
    """,
    "chrome_runtime": """
        if (!window.chrome) {
            window.chrome = {};
        }
        if (!window.chrome.runtime) {
            window.chrome.runtime = {};
        }
    """,
}

# Combined stealth script for injection
COMBINED_STEALTH_SCRIPT = "\n".join(STEALTH_SCRIPTS.values())


RequestPredicate = Callable[[str, str], bool]


def build_request_filter(
    blocked_resource_types: Optional[Iterable[str]] = None,
    tracker_markers: Optional[Iterable[str]] = None,
) -> RequestPredicate:
    """
    Build a predicate deciding whether a request should be aborted.

    Args:
        blocked_resource_types: Resource types to abort (image, font, ...)
        tracker_markers: URL fragments identifying trackers and ads

    Returns:
        Function (resource_type, url) -> True when the request must be blocked
    """
    blocked = frozenset(blocked_resource_types if blocked_resource_types is not None else BLOCKED_RESOURCE_TYPES)
    markers = tuple(tracker_markers if tracker_markers is not None else TRACKER_URL_MARKERS)

    def should_block(resource_type: str, url: str) -> bool:
        if resource_type in blocked:
            return True
        return any(marker in url for marker in markers)

    return should_block


def spoofed_headers() -> Dict[str, str]:
    """Headers sent with every anti-detection page load."""
    return dict(ANTI_DETECTION_HEADERS)


@dataclass
class RetryDelayConfig:
    """Bounds for the delay between navigation attempts (seconds)."""
    min_delay: float = RETRY_DELAY_MIN_SECONDS
    max_delay: float = RETRY_DELAY_MAX_SECONDS


class RetryDelay:
    """
    Human-like pause between navigation attempts.

    Every wait picks a uniform random delay within the configured bounds.
    """

    def __init__(
        self,
        config: Optional[RetryDelayConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or RetryDelayConfig()
        self._sleep = sleep

    def next_delay(self) -> float:
        return random.uniform(self.config.min_delay, self.config.max_delay)

    async def wait(self) -> float:
        """
        Wait before the next attempt.

        Returns:
            Actual delay in seconds
        """
        delay = self.next_delay()
        logger.debug(f"Waiting {delay:.2f}s before retrying navigation")
        await self._sleep(delay)
        return delay
