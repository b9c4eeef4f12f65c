"""
Unit tests for the Playwright backend.

Playwright objects are replaced with mocks; no browser is launched.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, Mock

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from article_extractor.browser_config import BrowserConfig
from article_extractor.infrastructure.browser_backend import (
    DESKTOP_VIEWPORTS,
    BrowserPage,
    PlaywrightBackend,
    cookie_to_playwright,
    is_timeout_error,
)
from article_extractor.models import Cookie

pytest_plugins = ('pytest_asyncio',)


@pytest.fixture
def mock_page():
    page = MagicMock()
    page.url = "https://news.example.com/story"
    page.goto = AsyncMock()
    page.route = AsyncMock()
    page.evaluate = AsyncMock(return_value="result")
    page.content = AsyncMock(return_value="<html></html>")
    page.add_init_script = AsyncMock()
    page.wait_for_selector = AsyncMock()
    return page


@pytest.fixture
def mock_context(mock_page):
    context = MagicMock()
    context.new_page = AsyncMock(return_value=mock_page)
    context.add_cookies = AsyncMock()
    context.close = AsyncMock()
    return context


@pytest.fixture
def backend(mock_context):
    """Backend with an already launched mock browser."""
    backend = PlaywrightBackend(BrowserConfig())
    backend._browser = MagicMock()
    backend._browser.new_context = AsyncMock(return_value=mock_context)
    return backend


class TestCookieConversion:
    """Test Cookie to Playwright conversion."""

    def test_expiry_in_seconds(self):
        """Playwright receives seconds."""
        cookie = Cookie(name="s", value="v", domain=".example.com", expires=1700000000000, same_site="Strict")

        data = cookie_to_playwright(cookie)

        assert data["expires"] == 1700000000
        assert data["sameSite"] == "Strict"
        assert data["httpOnly"] is True

    def test_session_cookie(self):
        """Cookies without expiry omit the field."""
        data = cookie_to_playwright(Cookie(name="s", value="v", domain="x", same_site="unspecified"))

        assert "expires" not in data
        assert "sameSite" not in data


class TestPlaywrightBackend:
    """Test backend operations against mocked Playwright objects."""

    @pytest.mark.asyncio
    async def test_new_page_uses_isolated_context(self, backend, mock_context, mock_page):
        """Each page gets its own context with the given UA and headers."""
        page = await backend.new_page("Agent/1.0", {"Accept-Language": "en-US"})

        options = backend._browser.new_context.call_args.kwargs
        assert options["user_agent"] == "Agent/1.0"
        assert options["extra_http_headers"] == {"Accept-Language": "en-US"}
        assert options["viewport"] in DESKTOP_VIEWPORTS
        assert page.page is mock_page
        assert page.url == "https://news.example.com/story"

    @pytest.mark.asyncio
    async def test_set_cookies(self, backend, mock_context):
        """Cookies are added to the page's context."""
        page = await backend.new_page()

        await backend.set_cookies(page, [Cookie(name="s", value="v", domain="x")])
        await backend.set_cookies(page, [])

        mock_context.add_cookies.assert_awaited_once()
        assert mock_context.add_cookies.call_args.args[0][0]["name"] == "s"

    @pytest.mark.asyncio
    async def test_goto_and_content(self, backend, mock_page):
        """Navigation options are forwarded."""
        page = await backend.new_page()

        await backend.goto(page, "https://news.example.com/story", timeout=30000, wait_until="networkidle")
        html = await backend.content(page)

        mock_page.goto.assert_awaited_once_with("https://news.example.com/story", timeout=30000, wait_until="networkidle")
        assert html == "<html></html>"

    @pytest.mark.asyncio
    async def test_evaluate_with_and_without_arg(self, backend, mock_page):
        """The argument is only passed when given."""
        page = await backend.new_page()

        await backend.evaluate(page, "() => 1")
        await backend.evaluate(page, "(s) => s", "article")

        assert mock_page.evaluate.await_args_list[0].args == ("() => 1",)
        assert mock_page.evaluate.await_args_list[1].args == ("(s) => s", "article")

    @pytest.mark.asyncio
    async def test_request_filter_routes(self, backend, mock_page):
        """The route handler aborts or continues per the predicate."""
        page = await backend.new_page()
        await backend.set_request_filter(page, lambda resource_type, url: resource_type == "image")

        pattern, handler = mock_page.route.call_args.args
        assert pattern == "**/*"

        blocked = Mock(request=Mock(resource_type="image", url="https://x/a.jpg"), abort=AsyncMock(), continue_=AsyncMock())
        allowed = Mock(request=Mock(resource_type="document", url="https://x/"), abort=AsyncMock(), continue_=AsyncMock())
        await handler(blocked)
        await handler(allowed)

        blocked.abort.assert_awaited_once()
        blocked.continue_.assert_not_awaited()
        allowed.continue_.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_page_close_swallows_errors(self, mock_context, mock_page):
        """Closing an already closed context is harmless."""
        mock_context.close = AsyncMock(side_effect=RuntimeError("Target closed"))

        await BrowserPage(context=mock_context, page=mock_page).close()

        mock_context.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close(self, backend):
        """Closing releases browser and Playwright."""
        browser = backend._browser
        browser.close = AsyncMock()
        playwright = MagicMock(stop=AsyncMock())
        backend._playwright = playwright

        await backend.close()

        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
        assert not backend.is_running


class TestTimeoutDetection:
    """Test timeout classification."""

    def test_timeouts(self):
        """Built-in and Playwright timeouts are recognized."""
        assert is_timeout_error(TimeoutError("slow"))
        assert is_timeout_error(PlaywrightTimeoutError("Timeout 30000ms exceeded"))
        assert not is_timeout_error(RuntimeError("net::ERR_ABORTED"))
