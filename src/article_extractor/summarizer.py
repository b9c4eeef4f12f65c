"""Summarization engine backed by a local Ollama server."""

import json
import logging
import math
import re
import time
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx

from article_extractor.config import LLMConfig
from article_extractor.constants import (
    CHARS_PER_TOKEN,
    LENGTH_INSTRUCTIONS,
    LLM_PROBE_TIMEOUT_SECONDS,
    LLM_PULL_TIMEOUT_SECONDS,
)
from article_extractor.errors import (
    PipelineError,
    all_models_failed,
    insufficient_memory,
    llm_server_unreachable,
    model_not_found,
    network_timeout,
    unknown_error,
)
from article_extractor.models import ModelCandidate, SummarizationResult

logger = logging.getLogger(__name__)


_REQUIRED_MEMORY = re.compile(r"more system memory \(([^)]+)\)")


@dataclass
class SummarizationOptions:
    """Per-call overrides; unset fields fall back to LLMConfig."""
    model: Optional[str] = None
    length: Optional[str] = None
    temperature: Optional[float] = None
    timeout: Optional[int] = None  # milliseconds


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def build_prompt(text: str, length: str) -> str:
    instruction = LENGTH_INSTRUCTIONS.get(length, LENGTH_INSTRUCTIONS["medium"])
    return f"{instruction}.\n\nArticle:\n{text}\n\nSummary:"


class SummarizationEngine:
    """Client for generating article summaries with a local LLM server.

    The model inventory (GET /api/tags) is cached per engine. By default the
    cache never expires; pass `inventory_ttl` (seconds) to refetch it
    periodically, or call `refresh_models()`.
    """

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        inventory_ttl: Optional[float] = None,
    ):
        """Initialize the summarization engine.

        Args:
            config: LLM settings (models, length, temperature, timeout)
            base_url: Server URL (default: config.base_url)
            transport: Optional httpx transport (used by tests)
            inventory_ttl: Seconds before the model list is refetched (default: config.inventory_ttl)
        """
        self.config = config or LLMConfig()
        self.base_url = (base_url or self.config.base_url).rstrip("/")
        self.inventory_ttl = inventory_ttl if inventory_ttl is not None else self.config.inventory_ttl

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.config.timeout / 1000,
            transport=transport,
        )
        self._models: Optional[List[ModelCandidate]] = None
        self._models_fetched_at = 0.0

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "SummarizationEngine":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    async def is_running(self) -> bool:
        """Check if the LLM server answers within a short timeout."""
        try:
            response = await self._client.get("/api/tags", timeout=LLM_PROBE_TIMEOUT_SECONDS)
            return response.is_success
        except httpx.HTTPError:
            return False

    async def get_available_models(self) -> List[ModelCandidate]:
        """Get the models installed on the server (cached).

        Raises:
            PipelineError: LLM_SERVER_UNREACHABLE, NETWORK_TIMEOUT or UNKNOWN
        """
        if self._models is not None and not self._inventory_expired():
            return self._models

        url = f"{self.base_url}/api/tags"
        try:
            response = await self._client.get("/api/tags")
            response.raise_for_status()
            payload = response.json()
        except httpx.ConnectError as e:
            raise llm_server_unreachable(self.base_url, e) from e
        except httpx.TimeoutException as e:
            raise network_timeout(url, self.config.timeout) from e
        except (httpx.HTTPError, ValueError) as e:
            raise unknown_error(e, url=url) from e

        self._models = [ModelCandidate.from_api(m) for m in payload.get("models") or []]
        self._models_fetched_at = time.monotonic()
        logger.debug(f"LLM inventory: {[m.name for m in self._models]}")
        return self._models

    async def refresh_models(self) -> List[ModelCandidate]:
        """Drop the cached inventory and fetch it again."""
        self._models = None
        return await self.get_available_models()

    def _inventory_expired(self) -> bool:
        if self.inventory_ttl is None:
            return False
        return time.monotonic() - self._models_fetched_at >= self.inventory_ttl

    async def _model_names(self) -> List[str]:
        try:
            return [m.name for m in await self.get_available_models()]
        except PipelineError:
            return []

    async def has_model(self, model_name: str) -> bool:
        """Check if a model is installed (substring match on names)."""
        return any(model_name in name for name in await self._model_names())

    async def select_best_model(self, preferred_models: List[str]) -> Optional[str]:
        """Pick the first preferred model that is installed.

        Falls back to the first installed model; None when nothing is installed
        or the inventory cannot be fetched.
        """
        names = await self._model_names()
        for preferred in preferred_models:
            if any(preferred in name for name in names):
                return preferred
        return names[0] if names else None

    async def get_model_info(self, model_name: str) -> Optional[ModelCandidate]:
        models = await self.get_available_models()
        return next((m for m in models if model_name in m.name), None)

    async def pull_model(self, model_name: str) -> None:
        """Download a model from the registry."""
        url = f"{self.base_url}/api/pull"
        try:
            response = await self._client.post(
                "/api/pull",
                json={"name": model_name, "stream": False},
                timeout=LLM_PULL_TIMEOUT_SECONDS,
            )
        except httpx.ConnectError as e:
            raise llm_server_unreachable(self.base_url, e) from e
        except httpx.TimeoutException as e:
            raise network_timeout(url, LLM_PULL_TIMEOUT_SECONDS * 1000) from e
        except httpx.HTTPError as e:
            raise unknown_error(e, url=url) from e

        status = _json_or_empty(response).get("status")
        if not response.is_success or status != "success":
            raise await self._map_error_response(model_name, response)

        logger.info(f"Pulled model {model_name}")
        self._models = None

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _request_body(self, text: str, options: SummarizationOptions, model: str, stream: bool) -> Dict[str, Any]:
        length = options.length or self.config.summary_length
        temperature = options.temperature if options.temperature is not None else self.config.temperature
        return {
            "model": model,
            "prompt": build_prompt(text, length),
            "stream": stream,
            "options": {"temperature": temperature},
        }

    def _timeout_ms(self, options: SummarizationOptions) -> int:
        return options.timeout or self.config.timeout

    async def summarize(self, text: str, options: Optional[SummarizationOptions] = None) -> SummarizationResult:
        """Generate a summary in a single request.

        Args:
            text: Article text
            options: Model / length / temperature / timeout overrides

        Returns:
            SummarizationResult

        Raises:
            PipelineError: mapped server failure, or UNKNOWN for an empty response
        """
        options = options or SummarizationOptions()
        model = options.model or self.config.primary_model
        timeout_ms = self._timeout_ms(options)
        url = f"{self.base_url}/api/generate"

        body = self._request_body(text, options, model, stream=False)

        start_time = time.time()
        try:
            response = await self._client.post(
                "/api/generate",
                json=body,
                timeout=timeout_ms / 1000,
            )
        except httpx.ConnectError as e:
            raise llm_server_unreachable(self.base_url, e) from e
        except httpx.TimeoutException as e:
            raise network_timeout(url, timeout_ms) from e
        except httpx.HTTPError as e:
            raise unknown_error(e, url=url) from e

        if not response.is_success:
            raise await self._map_error_response(model, response)

        payload = _json_or_empty(response)
        if payload.get("error"):
            raise await self._map_error_message(model, payload["error"])

        summary = (payload.get("response") or "").strip()
        if not summary:
            raise unknown_error(RuntimeError(f"Empty response from model {model}"), url=url)

        processing_time = (time.time() - start_time) * 1000
        logger.info(f"Summary generated with {model} in {processing_time:.0f}ms")

        return SummarizationResult(
            summary=summary,
            model=model,
            tokens_used=_tokens_used(payload, body["prompt"]),
            processing_time=processing_time,
        )

    async def summarize_with_fallback(
        self,
        text: str,
        options: Optional[SummarizationOptions] = None,
        fallbacks: Optional[List[str]] = None,
    ) -> SummarizationResult:
        """Try the primary model, then each fallback, strictly in order.

        Models missing from the inventory are skipped. Generation failures are
        logged and the next candidate is tried.

        Raises:
            PipelineError: aggregate "All summarization models failed" error
        """
        return await self._run_chain(text, options, fallbacks, self.summarize)

    async def collect_stream_with_fallback(
        self,
        text: str,
        options: Optional[SummarizationOptions] = None,
        fallbacks: Optional[List[str]] = None,
        on_chunk: Optional[Callable[[str], Any]] = None,
    ) -> SummarizationResult:
        """Streaming counterpart of summarize_with_fallback.

        Fragments already forwarded to on_chunk by a model that fails midway
        are not retracted; the next candidate streams from the start.
        """
        async def attempt(text: str, options: SummarizationOptions) -> SummarizationResult:
            return await self.collect_stream(text, options, on_chunk=on_chunk)

        return await self._run_chain(text, options, fallbacks, attempt)

    async def _run_chain(
        self,
        text: str,
        options: Optional[SummarizationOptions],
        fallbacks: Optional[List[str]],
        attempt: Callable[[str, SummarizationOptions], Awaitable[SummarizationResult]],
    ) -> SummarizationResult:
        options = options or SummarizationOptions()
        primary = options.model or self.config.primary_model
        fallbacks = self.config.fallback_models if fallbacks is None else fallbacks

        candidates: List[str] = []
        for model in [primary, *fallbacks]:
            if model not in candidates:
                candidates.append(model)

        available = await self._model_names()
        last_error: Optional[PipelineError] = None
        tried: List[str] = []

        for model in candidates:
            if not any(model in name for name in available):
                logger.warning(f"Model {model} not available, trying next...")
                continue

            tried.append(model)
            try:
                return await attempt(text, replace(options, model=model))
            except PipelineError as e:
                last_error = e
                logger.warning(f"Failed with model {model}: {e.message}")

        raise all_models_failed(tried or candidates, last_error, available)

    async def summarize_stream(
        self,
        text: str,
        options: Optional[SummarizationOptions] = None,
    ) -> AsyncIterator[str]:
        """Stream summary fragments as the server produces them.

        Fragments are read lazily: the next network chunk is only consumed when
        the caller asks for the next fragment. Malformed lines are skipped.
        """
        async for event in self._stream_events(text, options or SummarizationOptions()):
            fragment = event.get("response")
            if fragment:
                yield fragment

    async def collect_stream(
        self,
        text: str,
        options: Optional[SummarizationOptions] = None,
        on_chunk: Optional[Callable[[str], Any]] = None,
    ) -> SummarizationResult:
        """Consume a stream into a SummarizationResult, forwarding fragments to on_chunk."""
        options = options or SummarizationOptions()
        model = options.model or self.config.primary_model
        start_time = time.time()

        parts: List[str] = []
        final_event: Dict[str, Any] = {}
        async for event in self._stream_events(text, options):
            fragment = event.get("response")
            if fragment:
                parts.append(fragment)
                if on_chunk:
                    on_chunk(fragment)
            if event.get("done"):
                final_event = event

        summary = "".join(parts).strip()
        if not summary:
            raise unknown_error(RuntimeError(f"Empty response from model {model}"), url=f"{self.base_url}/api/generate")

        return SummarizationResult(
            summary=summary,
            model=model,
            tokens_used=_tokens_used(final_event, build_prompt(text, options.length or self.config.summary_length)),
            processing_time=(time.time() - start_time) * 1000,
        )

    async def _stream_events(self, text: str, options: SummarizationOptions) -> AsyncIterator[Dict[str, Any]]:
        model = options.model or self.config.primary_model
        timeout_ms = self._timeout_ms(options)
        url = f"{self.base_url}/api/generate"

        try:
            async with self._client.stream(
                "POST",
                "/api/generate",
                json=self._request_body(text, options, model, stream=True),
                timeout=timeout_ms / 1000,
            ) as response:
                if not response.is_success:
                    await response.aread()
                    raise await self._map_error_response(model, response)

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        event = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping malformed stream line: {line[:80]}")
                        continue
                    if not isinstance(event, dict):
                        continue
                    if event.get("error"):
                        raise await self._map_error_message(model, event["error"])

                    yield event

                    if event.get("done"):
                        return
        except httpx.ConnectError as e:
            raise llm_server_unreachable(self.base_url, e) from e
        except httpx.TimeoutException as e:
            raise network_timeout(url, timeout_ms) from e
        except httpx.HTTPError as e:
            raise unknown_error(e, url=url) from e

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    async def _map_error_response(self, model: str, response: httpx.Response) -> PipelineError:
        payload = _json_or_empty(response)
        message = payload.get("error") or payload.get("status") or response.text or f"HTTP {response.status_code}"
        if response.status_code == 404 and "not found" not in message.lower():
            message = f"model '{model}' not found"
        return await self._map_error_message(model, message)

    async def _map_error_message(self, model: str, message: str) -> PipelineError:
        lowered = message.lower()
        if "not found" in lowered:
            return model_not_found(model, await self._model_names())
        if "more system memory" in lowered:
            match = _REQUIRED_MEMORY.search(message)
            return insufficient_memory(model, match.group(1) if match else None)
        return unknown_error(RuntimeError(f"Summarization failed: {message}"), url=f"{self.base_url}/api/generate")


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _tokens_used(payload: Dict[str, Any], prompt: str) -> int:
    """Prompt tokens reported by the server, estimated when it omits them."""
    count = payload.get("prompt_eval_count")
    return count if count is not None else estimate_tokens(prompt)
