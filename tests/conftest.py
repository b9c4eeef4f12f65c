"""Shared fixtures: an in-memory browser backend, a fake LLM server and generated images."""

import io
import json
from typing import Any, List, Optional

import httpx
import pytest
from PIL import Image


ARTICLE_HTML = """
<html>
<head>
  <title>Fallback Title</title>
  <meta property="og:title" content="The Real Headline">
  <meta name="author" content="Jane Writer">
  <meta property="article:published_time" content="2024-03-01T09:30:00Z">
  <meta property="og:description" content="What happened and why it matters.">
  <meta property="og:image" content="https://cdn.example.com/feature.jpg">
</head>
<body>
  <nav>Home | World | Business</nav>
  <article>
    <h1>The Real Headline</h1>
    <p>First paragraph of the story with enough words to read.</p>
    <div class="advertisement">Buy things now</div>
    <p>Second paragraph continues the story.</p>
    <p></p>
    <script>trackVisitor();</script>
  </article>
  <footer>Copyright</footer>
</body>
</html>
"""


class FakePage:
    """Stands in for a BrowserPage."""

    def __init__(self):
        self.url = "about:blank"
        self.closed = False

    async def close(self):
        self.closed = True


class FakeBackend:
    """
    In-memory browser backend.

    `goto_errors` is consumed one entry per navigation; None entries succeed.
    Every call is recorded in `calls` in order.
    """

    def __init__(
        self,
        html: str = ARTICLE_HTML,
        body_text: str = "x" * 2000,
        goto_errors: Optional[List[Optional[BaseException]]] = None,
        images: Optional[List[dict]] = None,
        og_image: Optional[str] = None,
        selector_error: Optional[BaseException] = None,
        evaluate_error: Optional[BaseException] = None,
    ):
        self.html = html
        self.body_text = body_text
        self.goto_errors = list(goto_errors or [])
        self.images = images or []
        self.og_image = og_image
        self.selector_error = selector_error
        self.evaluate_error = evaluate_error

        self.calls: List[tuple] = []
        self.pages: List[FakePage] = []
        self.init_scripts: List[str] = []
        self.request_filter = None

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    async def new_page(self, user_agent=None, extra_headers=None):
        page = FakePage()
        self.pages.append(page)
        self.calls.append(("new_page", user_agent, extra_headers))
        return page

    async def set_cookies(self, page, cookies):
        self.calls.append(("set_cookies", list(cookies)))

    async def goto(self, page, url, timeout, wait_until):
        self.calls.append(("goto", url, timeout, wait_until))
        if self.goto_errors:
            error = self.goto_errors.pop(0)
            if error is not None:
                raise error
        page.url = url

    async def wait_for_selector(self, page, selector, timeout):
        self.calls.append(("wait_for_selector", selector, timeout))
        if self.selector_error:
            raise self.selector_error

    async def set_request_filter(self, page, predicate):
        self.calls.append(("set_request_filter",))
        self.request_filter = predicate

    async def add_init_script(self, page, script):
        self.calls.append(("add_init_script",))
        self.init_scripts.append(script)

    async def evaluate(self, page, script, arg: Any = None):
        self.calls.append(("evaluate", arg))
        if self.evaluate_error:
            raise self.evaluate_error
        if "innerText" in script:
            return self.body_text
        if "og:image" in script:
            return self.og_image
        if "querySelectorAll('img')" in script:
            return self.images
        return None

    async def content(self, page):
        self.calls.append(("content",))
        return self.html


class FakeOllama:
    """
    Minimal Ollama API.

    `replies` maps model name to either a summary string or an
    (HTTP status, error message) tuple. Error tuples apply to streamed
    requests too; successful streams replay `stream_lines`.
    """

    def __init__(self, models=None, replies=None, stream_lines=None, tags_status=200):
        self.models = models or []
        self.replies = replies or {}
        self.stream_lines = stream_lines or []
        self.tags_status = tags_status
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        self.requests.append((request.url.path, body))

        if request.url.path == "/api/tags":
            if self.tags_status != 200:
                return httpx.Response(self.tags_status)
            return httpx.Response(200, json={"models": [{"name": name, "size": 1} for name in self.models]})

        if request.url.path == "/api/pull":
            self.models.append(body["name"])
            return httpx.Response(200, json={"status": "success"})

        if request.url.path == "/api/generate":
            reply = self.replies.get(body["model"], "A summary.")
            if isinstance(reply, tuple):
                status, message = reply
                return httpx.Response(status, json={"error": message})
            if body.get("stream"):
                return httpx.Response(200, content="\n".join(self.stream_lines).encode())
            return httpx.Response(200, json={"response": reply, "done": True, "prompt_eval_count": 42})

        return httpx.Response(404)

    def generated_models(self):
        return [body["model"] for path, body in self.requests if path == "/api/generate"]

    def tags_requests(self):
        return sum(1 for path, _ in self.requests if path == "/api/tags")


def make_image_bytes(width: int = 64, height: int = 48, color=(200, 30, 30), fmt: str = "PNG") -> bytes:
    """Encode a solid-color image."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def png_bytes():
    return make_image_bytes()
