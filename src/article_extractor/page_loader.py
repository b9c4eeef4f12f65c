"""
Page loader with retries, anti-detection and paywall detection.

Renders one URL through a browser backend:
- Injects authentication cookies before navigation
- Retries navigation with a randomized delay between attempts
- Blocks trackers and heavy resources, spoofs headers, hides automation flags
- Classifies the rendered page for paywalls
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Sequence

from article_extractor.browser_config import BrowserConfig
from article_extractor.constants import PAYWALL_BODY_TEXT_THRESHOLD, PAYWALL_PATTERNS
from article_extractor.errors import ErrorContext, ErrorCode, PipelineError, network_timeout
from article_extractor.infrastructure.anti_detection import (
    COMBINED_STEALTH_SCRIPT,
    RequestPredicate,
    RetryDelay,
    build_request_filter,
    spoofed_headers,
)
from article_extractor.infrastructure.browser_backend import is_timeout_error
from article_extractor.models import Cookie, LoaderState, PaywallVerdict

logger = logging.getLogger(__name__)


BODY_TEXT_SCRIPT = "() => document.body ? document.body.innerText : ''"


class BrowserBackend(Protocol):
    """Operations the PageLoader needs from a browser."""

    async def new_page(self, user_agent: Optional[str] = None, extra_headers: Optional[dict] = None) -> Any: ...

    async def set_cookies(self, page: Any, cookies: Sequence[Cookie]) -> None: ...

    async def goto(self, page: Any, url: str, timeout: int, wait_until: str) -> None: ...

    async def wait_for_selector(self, page: Any, selector: str, timeout: int) -> None: ...

    async def set_request_filter(self, page: Any, predicate: RequestPredicate) -> None: ...

    async def add_init_script(self, page: Any, script: str) -> None: ...

    async def evaluate(self, page: Any, script: str, arg: Any = None) -> Any: ...

    async def content(self, page: Any) -> str: ...


@dataclass
class PageLoadOptions:
    """Per-load overrides of the browser configuration."""
    wait_for_selector: Optional[str] = None
    timeout: Optional[int] = None
    retries: Optional[int] = None


@dataclass
class PageLoadResult:
    """A rendered page. Owns the page handle until close() is called."""
    url: str
    page: Any
    final_url: Optional[str] = None
    html: str = ""
    paywall: PaywallVerdict = PaywallVerdict.NONE
    attempts: int = 0
    load_time: float = 0.0
    states: List[LoaderState] = field(default_factory=list)

    async def close(self) -> None:
        if self.page is not None:
            await self.page.close()
            self.page = None


def classify_paywall(html: str, body_text: str) -> PaywallVerdict:
    """
    Classify rendered content for paywalls.

    A page mentioning subscriptions / sign-in / walls whose visible body text
    is short is treated as blocked by an overlay.
    """
    if any(pattern.search(html) for pattern in PAYWALL_PATTERNS):
        if len(body_text) < PAYWALL_BODY_TEXT_THRESHOLD:
            return PaywallVerdict.SOFT_OVERLAY
    return PaywallVerdict.NONE


class PageLoader:
    """
    Loads pages through a browser backend.

    Example:
        async with PlaywrightBackend(config) as backend:
            loader = PageLoader(backend, config)
            result = await loader.load(url, cookies)
            try:
                ...
            finally:
                await result.close()
    """

    def __init__(
        self,
        backend: BrowserBackend,
        config: Optional[BrowserConfig] = None,
        retry_delay: Optional[RetryDelay] = None,
    ):
        self.backend = backend
        self.config = config or BrowserConfig()
        self.retry_delay = retry_delay or RetryDelay()
        self._request_filter = build_request_filter(
            self.config.blocked_resource_types,
            self.config.tracker_markers,
        )

    async def load(
        self,
        url: str,
        cookies: Optional[Sequence[Cookie]] = None,
        options: Optional[PageLoadOptions] = None,
    ) -> PageLoadResult:
        """
        Load a page, retrying navigation failures.

        Args:
            url: Page to render
            cookies: Authentication cookies injected before navigation
            options: Optional selector wait and timeout / retry overrides

        Returns:
            PageLoadResult with rendered HTML and paywall verdict

        Raises:
            PipelineError: NETWORK_TIMEOUT when the last attempt timed out,
                UNKNOWN (with the url) for any other load failure
        """
        options = options or PageLoadOptions()
        timeout = options.timeout or self.config.timeout
        retries = options.retries or self.config.retries
        anti_detection = self.config.anti_detection

        states = [LoaderState.IDLE]
        start_time = time.time()

        if anti_detection:
            page = await self.backend.new_page(self.config.get_user_agent(), spoofed_headers())
        else:
            page = await self.backend.new_page()

        attempt = 0
        try:
            if anti_detection:
                await self.backend.set_request_filter(page, self._request_filter)
                await self.backend.add_init_script(page, COMBINED_STEALTH_SCRIPT)

            if cookies:
                await self.backend.set_cookies(page, cookies)
                logger.debug(f"Injected {len(cookies)} cookies")

            for attempt in range(1, retries + 1):
                states.append(LoaderState.LOADING)
                try:
                    logger.info(f"Loading: {url} (attempt {attempt}/{retries})")
                    await self.backend.goto(page, url, timeout=timeout, wait_until=self.config.wait_until)
                    break
                except Exception as e:
                    if attempt == retries:
                        raise
                    logger.warning(f"Navigation failed for {url}: {e}")
                    states.append(LoaderState.RETRYING)
                    if anti_detection:
                        await self.retry_delay.wait()

            if options.wait_for_selector:
                await self.backend.wait_for_selector(page, options.wait_for_selector, timeout=timeout)

            html = await self.backend.content(page)
            states.append(LoaderState.LOADED)

        except Exception as e:
            states.append(LoaderState.FAILED)
            await page.close()
            logger.error(f"Page load failed for {url}: {e}")
            raise self._to_pipeline_error(e, url, timeout, attempt, states) from e

        result = PageLoadResult(
            url=url,
            page=page,
            final_url=getattr(page, "url", None) or url,
            html=html,
            attempts=attempt,
            load_time=time.time() - start_time,
            states=states,
        )
        result.paywall = await self.detect_paywall(page, html)
        states.append(LoaderState.PAYWALL_CHECKED)

        logger.info(f"Page loaded: {url} (attempts={attempt}, time={result.load_time:.2f}s, paywall={result.paywall.value})")
        return result

    async def detect_paywall(self, page: Any, html: Optional[str] = None) -> PaywallVerdict:
        """Classify a loaded page; evaluation errors count as no paywall."""
        try:
            if html is None:
                html = await self.backend.content(page)
            if not any(pattern.search(html) for pattern in PAYWALL_PATTERNS):
                return PaywallVerdict.NONE
            body_text = await self.backend.evaluate(page, BODY_TEXT_SCRIPT)
            return classify_paywall(html, body_text or "")
        except Exception as e:
            logger.debug(f"Paywall detection failed: {e}")
            return PaywallVerdict.NONE

    @staticmethod
    def _to_pipeline_error(
        error: Exception,
        url: str,
        timeout: int,
        attempts: int,
        states: List[LoaderState],
    ) -> PipelineError:
        if isinstance(error, PipelineError):
            return error

        details = {
            "attempts": attempts,
            "states": [state.value for state in states],
        }
        if is_timeout_error(error):
            timeout_error = network_timeout(url, timeout)
            return PipelineError(
                timeout_error.code,
                timeout_error.message,
                ErrorContext(url=url, details={**timeout_error.context.details, **details}),
                timeout_error.suggestions,
            )

        return PipelineError(
            ErrorCode.UNKNOWN,
            f"Failed to load {url}: {error}",
            ErrorContext(url=url, details={**details, "original_error": type(error).__name__}),
        )
