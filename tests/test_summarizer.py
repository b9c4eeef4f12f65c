"""
Tests for the summarization engine against a mocked Ollama server.
"""

import json

import httpx
import pytest

from article_extractor.config import LLMConfig
from article_extractor.constants import LENGTH_INSTRUCTIONS
from article_extractor.errors import ErrorCode, PipelineError
from article_extractor.summarizer import (
    SummarizationEngine,
    SummarizationOptions,
    build_prompt,
    estimate_tokens,
)

from conftest import FakeOllama

pytest_plugins = ('pytest_asyncio',)


ARTICLE_TEXT = "The city council approved the new transit plan on Tuesday. " * 20


def make_engine(server: FakeOllama, **config) -> SummarizationEngine:
    return SummarizationEngine(LLMConfig(**config), transport=httpx.MockTransport(server.handler))


class TestHelpers:
    """Test prompt and token helpers."""

    def test_estimate_tokens(self):
        """Four characters per token, rounded up."""
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_build_prompt(self):
        """The length instruction leads the prompt."""
        prompt = build_prompt("Body text", "short")

        assert prompt.startswith(LENGTH_INSTRUCTIONS["short"])
        assert "Article:\nBody text" in prompt
        assert prompt.endswith("Summary:")

    def test_unknown_length_uses_medium(self):
        """Unrecognized lengths fall back to medium."""
        assert build_prompt("x", "epic").startswith(LENGTH_INSTRUCTIONS["medium"])


class TestInventory:
    """Test model inventory and selection."""

    @pytest.mark.asyncio
    async def test_is_running(self):
        """A successful tags request means the server is up."""
        async with make_engine(FakeOllama()) as engine:
            assert await engine.is_running()

    @pytest.mark.asyncio
    async def test_is_not_running(self):
        """Connection failures mean the server is down."""
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with SummarizationEngine(transport=httpx.MockTransport(handler)) as engine:
            assert not await engine.is_running()

    @pytest.mark.asyncio
    async def test_unreachable_inventory(self):
        """Fetching models from a dead server raises LLM_SERVER_UNREACHABLE."""
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with SummarizationEngine(transport=httpx.MockTransport(handler)) as engine:
            with pytest.raises(PipelineError) as exc_info:
                await engine.get_available_models()

        assert exc_info.value.code == ErrorCode.LLM_SERVER_UNREACHABLE

    @pytest.mark.asyncio
    async def test_inventory_server_error(self):
        """A failing tags endpoint is not a running server."""
        async with make_engine(FakeOllama(tags_status=500)) as engine:
            assert not await engine.is_running()
            with pytest.raises(PipelineError) as exc_info:
                await engine.get_available_models()

        assert exc_info.value.code == ErrorCode.UNKNOWN

    @pytest.mark.asyncio
    async def test_inventory_is_cached(self):
        """The model list is fetched once per engine."""
        server = FakeOllama(models=["llama3.1:latest"])
        async with make_engine(server) as engine:
            await engine.get_available_models()
            await engine.has_model("llama3.1")
            await engine.select_best_model(["llama3.1"])

        assert server.tags_requests() == 1

    @pytest.mark.asyncio
    async def test_inventory_ttl(self):
        """An expired inventory is refetched."""
        server = FakeOllama(models=["llama3.1:latest"])
        async with make_engine(server, inventory_ttl=60) as engine:
            await engine.get_available_models()
            engine._models_fetched_at -= 120
            await engine.get_available_models()

        assert server.tags_requests() == 2

    @pytest.mark.asyncio
    async def test_refresh_models(self):
        """refresh_models bypasses the cache."""
        server = FakeOllama(models=["mistral:latest"])
        async with make_engine(server) as engine:
            await engine.get_available_models()
            server.models.append("qwen3:4b")
            models = await engine.refresh_models()

        assert [m.name for m in models] == ["mistral:latest", "qwen3:4b"]

    @pytest.mark.asyncio
    async def test_select_best_model_prefers_order(self):
        """The first installed preference wins."""
        async with make_engine(FakeOllama(models=["mistral:latest", "qwen3:4b"])) as engine:
            assert await engine.select_best_model(["llama3.1", "qwen3:4b", "mistral"]) == "qwen3:4b"

    @pytest.mark.asyncio
    async def test_select_best_model_falls_back_to_installed(self):
        """Without a matching preference the first installed model is used."""
        async with make_engine(FakeOllama(models=["phi3:mini"])) as engine:
            assert await engine.select_best_model(["llama3.1"]) == "phi3:mini"

    @pytest.mark.asyncio
    async def test_select_best_model_empty(self):
        """Nothing installed means no model."""
        async with make_engine(FakeOllama(models=[])) as engine:
            assert await engine.select_best_model(["llama3.1"]) is None

    @pytest.mark.asyncio
    async def test_get_model_info(self):
        """Model details come from the inventory."""
        async with make_engine(FakeOllama(models=["llama3.1:latest"])) as engine:
            info = await engine.get_model_info("llama3.1")
            missing = await engine.get_model_info("mistral")

        assert info.name == "llama3.1:latest"
        assert missing is None

    @pytest.mark.asyncio
    async def test_pull_model_invalidates_cache(self):
        """A pulled model shows up in the next inventory."""
        server = FakeOllama(models=[])
        async with make_engine(server) as engine:
            assert not await engine.has_model("tinyllama")
            await engine.pull_model("tinyllama")
            assert await engine.has_model("tinyllama")


class TestSummarize:
    """Test single-request summarization."""

    @pytest.mark.asyncio
    async def test_summarize(self):
        """The summary, model and token count are returned."""
        server = FakeOllama(models=["llama3.1"], replies={"llama3.1": "  Council approves transit plan.  "})
        async with make_engine(server, temperature=0.2) as engine:
            result = await engine.summarize(ARTICLE_TEXT, SummarizationOptions(length="short"))

        assert result.summary == "Council approves transit plan."
        assert result.model == "llama3.1"
        assert result.tokens_used == 42
        assert result.processing_time >= 0

        _, body = server.requests[-1]
        assert body["stream"] is False
        assert body["options"] == {"temperature": 0.2}
        assert body["prompt"].startswith(LENGTH_INSTRUCTIONS["short"])

    @pytest.mark.asyncio
    async def test_model_not_found(self):
        """A missing model maps to MODEL_NOT_FOUND with the installed models."""
        server = FakeOllama(models=["mistral:latest"], replies={"llama3.1": (404, "model 'llama3.1' not found")})
        async with make_engine(server) as engine:
            with pytest.raises(PipelineError) as exc_info:
                await engine.summarize(ARTICLE_TEXT)

        error = exc_info.value
        assert error.code == ErrorCode.MODEL_NOT_FOUND
        assert error.context.details["available_models"] == ["mistral:latest"]

    @pytest.mark.asyncio
    async def test_insufficient_memory(self):
        """Out-of-memory answers map to INSUFFICIENT_MEMORY."""
        server = FakeOllama(replies={
            "llama3.1": (500, "model requires more system memory (12.5 GiB) than is available (8.0 GiB)"),
        })
        async with make_engine(server) as engine:
            with pytest.raises(PipelineError) as exc_info:
                await engine.summarize(ARTICLE_TEXT)

        assert exc_info.value.code == ErrorCode.INSUFFICIENT_MEMORY
        assert exc_info.value.context.details["required_memory"] == "12.5 GiB"

    @pytest.mark.asyncio
    async def test_empty_response(self):
        """A blank summary is an error."""
        async with make_engine(FakeOllama(replies={"llama3.1": "   "})) as engine:
            with pytest.raises(PipelineError) as exc_info:
                await engine.summarize(ARTICLE_TEXT)

        assert exc_info.value.code == ErrorCode.UNKNOWN

    @pytest.mark.asyncio
    async def test_tokens_estimated_when_not_reported(self):
        """Without prompt_eval_count the prompt size is estimated."""
        prompts = []

        def handler(request):
            body = json.loads(request.content)
            prompts.append(body["prompt"])
            return httpx.Response(200, json={"response": "Summary.", "done": True})

        async with SummarizationEngine(transport=httpx.MockTransport(handler)) as engine:
            result = await engine.summarize(ARTICLE_TEXT)

        assert result.tokens_used == estimate_tokens(prompts[0])
        assert result.tokens_used > 0

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Request timeouts map to NETWORK_TIMEOUT."""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with SummarizationEngine(transport=httpx.MockTransport(handler)) as engine:
            with pytest.raises(PipelineError) as exc_info:
                await engine.summarize(ARTICLE_TEXT, SummarizationOptions(timeout=15000))

        assert exc_info.value.code == ErrorCode.NETWORK_TIMEOUT
        assert exc_info.value.context.details["timeout"] == 15000


class TestFallback:
    """Test the model fallback chain."""

    @pytest.mark.asyncio
    async def test_strict_order(self):
        """Fallbacks are tried in order until one succeeds."""
        server = FakeOllama(
            models=["llama3.1", "mistral", "qwen3:4b"],
            replies={
                "llama3.1": (500, "model requires more system memory (12 GiB)"),
                "mistral": (500, "unexpected EOF"),
                "qwen3:4b": "Summary from qwen.",
            },
        )
        async with make_engine(server) as engine:
            result = await engine.summarize_with_fallback(ARTICLE_TEXT, fallbacks=["mistral", "qwen3:4b"])

        assert result.model == "qwen3:4b"
        assert server.generated_models() == ["llama3.1", "mistral", "qwen3:4b"]

    @pytest.mark.asyncio
    async def test_skips_unavailable_models(self):
        """Models missing from the inventory are never requested."""
        server = FakeOllama(models=["qwen3:4b"], replies={"qwen3:4b": "Summary."})
        async with make_engine(server) as engine:
            result = await engine.summarize_with_fallback(
                ARTICLE_TEXT,
                SummarizationOptions(model="llama3.1"),
                fallbacks=["mistral", "qwen3:4b"],
            )

        assert result.model == "qwen3:4b"
        assert server.generated_models() == ["qwen3:4b"]

    @pytest.mark.asyncio
    async def test_duplicates_tried_once(self):
        """A fallback equal to the primary is not retried."""
        server = FakeOllama(models=["llama3.1"], replies={"llama3.1": (500, "boom")})
        async with make_engine(server) as engine:
            with pytest.raises(PipelineError):
                await engine.summarize_with_fallback(ARTICLE_TEXT, fallbacks=["llama3.1"])

        assert server.generated_models() == ["llama3.1"]

    @pytest.mark.asyncio
    async def test_all_models_failed(self):
        """The aggregate error lists what was tried and keeps the last code."""
        server = FakeOllama(
            models=["llama3.1", "mistral"],
            replies={"llama3.1": (500, "boom"), "mistral": (500, "needs more system memory (9 GiB)")},
        )
        async with make_engine(server) as engine:
            with pytest.raises(PipelineError) as exc_info:
                await engine.summarize_with_fallback(ARTICLE_TEXT, fallbacks=["mistral"])

        error = exc_info.value
        assert error.message.startswith("All summarization models failed")
        assert error.code == ErrorCode.INSUFFICIENT_MEMORY
        assert error.context.details["models_tried"] == ["llama3.1", "mistral"]

    @pytest.mark.asyncio
    async def test_nothing_installed(self):
        """With no candidate installed the chain fails as MODEL_NOT_FOUND."""
        server = FakeOllama(models=[])
        async with make_engine(server) as engine:
            with pytest.raises(PipelineError) as exc_info:
                await engine.summarize_with_fallback(ARTICLE_TEXT, fallbacks=["mistral"])

        assert exc_info.value.code == ErrorCode.MODEL_NOT_FOUND
        assert server.generated_models() == []

    @pytest.mark.asyncio
    async def test_config_fallbacks_by_default(self):
        """Without explicit fallbacks the configured list is used."""
        server = FakeOllama(models=["phi3"], replies={"phi3": "Summary."})
        async with make_engine(server, primary_model="llama3.1", fallback_models=["phi3"]) as engine:
            result = await engine.summarize_with_fallback(ARTICLE_TEXT)

        assert result.model == "phi3"


class TestStreaming:
    """Test streamed summarization."""

    STREAM = [
        json.dumps({"response": "Council ", "done": False}),
        "{not json",
        "",
        json.dumps({"response": "approves ", "done": False}),
        json.dumps({"response": "plan.", "done": False}),
        json.dumps({"response": "", "done": True, "prompt_eval_count": 17}),
        json.dumps({"response": "after done", "done": False}),
    ]

    @pytest.mark.asyncio
    async def test_summarize_stream(self):
        """Fragments arrive in order; malformed lines and trailing data are ignored."""
        server = FakeOllama(stream_lines=self.STREAM)
        async with make_engine(server) as engine:
            fragments = [fragment async for fragment in engine.summarize_stream(ARTICLE_TEXT)]

        assert fragments == ["Council ", "approves ", "plan."]
        assert server.requests[-1][1]["stream"] is True

    @pytest.mark.asyncio
    async def test_collect_stream(self):
        """Collected streams forward every fragment and build a result."""
        chunks = []
        async with make_engine(FakeOllama(stream_lines=self.STREAM)) as engine:
            result = await engine.collect_stream(ARTICLE_TEXT, on_chunk=chunks.append)

        assert chunks == ["Council ", "approves ", "plan."]
        assert result.summary == "Council approves plan."
        assert result.tokens_used == 17

    @pytest.mark.asyncio
    async def test_stream_error_event(self):
        """An error event in the stream is raised."""
        server = FakeOllama(
            models=["mistral"],
            stream_lines=[json.dumps({"error": "model 'llama3.1' not found"})],
        )
        async with make_engine(server) as engine:
            with pytest.raises(PipelineError) as exc_info:
                await engine.collect_stream(ARTICLE_TEXT)

        assert exc_info.value.code == ErrorCode.MODEL_NOT_FOUND

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        """A stream without fragments is an error."""
        server = FakeOllama(stream_lines=[json.dumps({"done": True})])
        async with make_engine(server) as engine:
            with pytest.raises(PipelineError) as exc_info:
                await engine.collect_stream(ARTICLE_TEXT)

        assert exc_info.value.code == ErrorCode.UNKNOWN

    @pytest.mark.asyncio
    async def test_stream_tokens_estimated(self):
        """A done event without prompt_eval_count falls back to the estimate."""
        server = FakeOllama(stream_lines=[
            json.dumps({"response": "Council approves.", "done": False}),
            json.dumps({"response": "", "done": True}),
        ])
        async with make_engine(server) as engine:
            result = await engine.collect_stream(ARTICLE_TEXT)

        assert result.tokens_used == estimate_tokens(server.requests[-1][1]["prompt"])

    @pytest.mark.asyncio
    async def test_collect_stream_with_fallback(self):
        """A failing streamed model hands over to the next fallback."""
        server = FakeOllama(
            models=["llama3.1", "mistral"],
            replies={"llama3.1": (500, "boom")},
            stream_lines=self.STREAM,
        )
        chunks = []
        async with make_engine(server) as engine:
            result = await engine.collect_stream_with_fallback(
                ARTICLE_TEXT, fallbacks=["mistral"], on_chunk=chunks.append
            )

        assert result.model == "mistral"
        assert result.summary == "Council approves plan."
        assert chunks == ["Council ", "approves ", "plan."]
        assert server.generated_models() == ["llama3.1", "mistral"]
        assert all(body["stream"] is True for path, body in server.requests if path == "/api/generate")

    @pytest.mark.asyncio
    async def test_stream_fallback_all_failed(self):
        """The streamed chain fails with the same aggregate error."""
        server = FakeOllama(
            models=["llama3.1", "mistral"],
            replies={"llama3.1": (500, "boom"), "mistral": (404, "model 'mistral' not found")},
        )
        async with make_engine(server) as engine:
            with pytest.raises(PipelineError) as exc_info:
                await engine.collect_stream_with_fallback(ARTICLE_TEXT, fallbacks=["mistral"])

        assert exc_info.value.message.startswith("All summarization models failed")
        assert exc_info.value.code == ErrorCode.MODEL_NOT_FOUND
        assert exc_info.value.context.details["models_tried"] == ["llama3.1", "mistral"]
