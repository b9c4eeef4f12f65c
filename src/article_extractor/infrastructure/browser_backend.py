"""
Playwright browser backend.

Thin async wrapper around playwright.async_api exposing the operations the
PageLoader needs. Each page gets its own isolated browser context so cookies
and storage never leak between loads.
"""

import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from playwright.async_api import TimeoutError as PlaywrightTimeoutError, async_playwright

from article_extractor.browser_config import BrowserConfig
from article_extractor.infrastructure.anti_detection import RequestPredicate
from article_extractor.models import Cookie

logger = logging.getLogger(__name__)


# Realistic viewport sizes for desktop
DESKTOP_VIEWPORTS = [
    {"width": 1920, "height": 1080},
    {"width": 1366, "height": 768},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
]


@dataclass
class BrowserPage:
    """An open page together with the context that owns it."""
    context: Any
    page: Any

    @property
    def url(self) -> str:
        return self.page.url

    async def close(self) -> None:
        """Close the context (and with it the page)."""
        try:
            await self.context.close()
        except Exception as e:
            logger.debug(f"Error closing browser context: {e}")


def cookie_to_playwright(cookie: Cookie) -> Dict[str, Any]:
    """Convert a Cookie into the dict accepted by BrowserContext.add_cookies."""
    data: Dict[str, Any] = {
        "name": cookie.name,
        "value": cookie.value,
        "domain": cookie.domain,
        "path": cookie.path or "/",
        "secure": cookie.secure,
        "httpOnly": cookie.http_only,
    }
    if cookie.same_site in ("Strict", "Lax", "None"):
        data["sameSite"] = cookie.same_site
    if cookie.expires:
        # Playwright expects seconds
        data["expires"] = cookie.expires / 1000
    return data


class PlaywrightBackend:
    """
    Browser backend implemented with Playwright.

    Usage:
        async with PlaywrightBackend(config) as backend:
            page = await backend.new_page(user_agent, headers)
            await backend.goto(page, url, timeout=30000, wait_until="networkidle")
    """

    def __init__(self, config: Optional[BrowserConfig] = None):
        self._config = config or BrowserConfig()
        self._playwright = None
        self._browser = None

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def launch(self) -> None:
        """Start Playwright and launch the configured browser."""
        if self._browser:
            return

        logger.info(f"Launching {self._config.browser_type} browser (headless={self._config.headless})")

        self._playwright = await async_playwright().start()
        browser_launcher = getattr(self._playwright, self._config.browser_type)

        launch_options: Dict[str, Any] = {"headless": self._config.headless}
        if self._config.launch_args:
            launch_options["args"] = self._config.launch_args

        self._browser = await browser_launcher.launch(**launch_options)
        logger.info("Browser launched successfully")

    async def close(self) -> None:
        """Close the browser and stop Playwright."""
        if self._browser:
            logger.info("Closing browser")
            await self._browser.close()
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    async def __aenter__(self) -> "PlaywrightBackend":
        await self.launch()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def new_page(
        self,
        user_agent: Optional[str] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> BrowserPage:
        """Open a page in a fresh, isolated context."""
        if not self._browser:
            await self.launch()

        context_options: Dict[str, Any] = {
            "viewport": random.choice(DESKTOP_VIEWPORTS),
            "locale": "en-US",
            "java_script_enabled": True,
        }
        if user_agent:
            context_options["user_agent"] = user_agent
        if extra_headers:
            context_options["extra_http_headers"] = extra_headers

        context = await self._browser.new_context(**context_options)
        page = await context.new_page()
        return BrowserPage(context=context, page=page)

    async def set_cookies(self, page: BrowserPage, cookies: Sequence[Cookie]) -> None:
        if cookies:
            await page.context.add_cookies([cookie_to_playwright(c) for c in cookies])

    async def goto(self, page: BrowserPage, url: str, timeout: int, wait_until: str) -> None:
        await page.page.goto(url, timeout=timeout, wait_until=wait_until)

    async def wait_for_selector(self, page: BrowserPage, selector: str, timeout: int) -> None:
        await page.page.wait_for_selector(selector, timeout=timeout)

    async def set_request_filter(self, page: BrowserPage, predicate: RequestPredicate) -> None:
        """Abort every request for which predicate(resource_type, url) is True."""

        async def handle(route):
            request = route.request
            if predicate(request.resource_type, request.url):
                await route.abort()
            else:
                await route.continue_()

        await page.page.route("**/*", handle)

    async def add_init_script(self, page: BrowserPage, script: str) -> None:
        await page.page.add_init_script(script)

    async def evaluate(self, page: BrowserPage, script: str, arg: Any = None) -> Any:
        if arg is None:
            return await page.page.evaluate(script)
        return await page.page.evaluate(script, arg)

    async def content(self, page: BrowserPage) -> str:
        return await page.page.content()


def is_timeout_error(error: BaseException) -> bool:
    """True for Playwright and asyncio timeouts."""
    return isinstance(error, (TimeoutError, PlaywrightTimeoutError))
