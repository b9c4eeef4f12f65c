"""
Browser configuration for Playwright-based page loading.

This module provides a validated Pydantic configuration model for all browser-related
settings.
"""
import random
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from article_extractor.constants import (
    BLOCKED_RESOURCE_TYPES,
    DEFAULT_PAGE_RETRIES,
    TRACKER_URL_MARKERS,
)


# User agent pool for rotation
USER_AGENTS = [
    # Chrome on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    # Chrome on Mac
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    # Firefox on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    # Safari on Mac
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
]


def get_random_user_agent() -> str:
    """Get a random user agent from the pool."""
    return random.choice(USER_AGENTS)


class BrowserConfig(BaseModel):
    """
    Configuration for the PageLoader and its Playwright backend.

    All fields are validated by Pydantic to ensure type safety and valid values.
    """

    headless: bool = Field(
        default=True,
        description="Run browser in headless mode (no visible UI)"
    )

    anti_detection: bool = Field(
        default=True,
        description="Rotate user agents, spoof headers, block trackers and hide automation flags"
    )

    browser_type: Literal["chromium", "firefox", "webkit"] = Field(
        default="chromium",
        description="Browser engine to use"
    )

    timeout: int = Field(
        default=30000,
        description="Page load timeout in milliseconds",
        ge=5000,
        le=300000
    )

    retries: int = Field(
        default=DEFAULT_PAGE_RETRIES,
        description="Navigation attempts per page load",
        ge=1,
        le=10
    )

    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = Field(
        default="networkidle",
        description="When to consider navigation complete"
    )

    launch_args: List[str] = Field(
        default_factory=list,
        description="Additional browser launch arguments (e.g., '--disable-http2')"
    )

    user_agent: Optional[str] = Field(
        default=None,
        description="Custom user agent. If None and rotate_user_agent=True, a random one is used."
    )

    rotate_user_agent: bool = Field(
        default=True,
        description="Pick a new user agent for every page load"
    )

    blocked_resource_types: List[str] = Field(
        default_factory=lambda: list(BLOCKED_RESOURCE_TYPES),
        description="Resource types aborted when anti-detection is on"
    )

    tracker_markers: List[str] = Field(
        default_factory=lambda: list(TRACKER_URL_MARKERS),
        description="URL fragments aborted when anti-detection is on"
    )

    class Config:
        """Pydantic model configuration."""
        frozen = False
        validate_assignment = True

    def get_user_agent(self) -> str:
        """Get the user agent to use for this config."""
        if self.user_agent:
            return self.user_agent
        if self.rotate_user_agent:
            return get_random_user_agent()
        return USER_AGENTS[0]
