"""
Error Recovery Engine.

Classifies failures from every pipeline stage, decides whether the run can
continue (retry, degrade) or must stop, and tracks how many recoveries have
been attempted per error code.

Attempt counts live in a RecoveryAttemptCounter that the pipeline creates for
each run and passes to every `handle()` call, so concurrent runs never share
recovery state:

    engine = ErrorRecoveryEngine()
    counter = RecoveryAttemptCounter()
    outcome = await engine.handle(error, counter)
    if not outcome.recovered:
        raise outcome.error
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from article_extractor.constants import MAX_RECOVERY_ATTEMPTS, NETWORK_BACKOFF_BASE_MS
from article_extractor.errors import (
    ErrorCode,
    FATAL_CODES,
    PipelineError,
    RecoverySuggestion,
    network_timeout,
    unknown_error,
)

logger = logging.getLogger(__name__)


def network_backoff_ms(attempt: int) -> int:
    """Backoff before retry number `attempt` (1-based): 1000, 2000, 4000 ms."""
    return NETWORK_BACKOFF_BASE_MS * 2 ** (attempt - 1)


def is_fatal(error: BaseException) -> bool:
    """True when the error needs user intervention (credentials or config)."""
    return isinstance(error, PipelineError) and error.code in FATAL_CODES


def is_recoverable(error: BaseException) -> bool:
    """Errors outside the taxonomy are assumed recoverable."""
    if isinstance(error, PipelineError):
        return error.recoverable
    return True


def normalize_error(error: BaseException, url: Optional[str] = None) -> PipelineError:
    """Convert any exception into a PipelineError."""
    if isinstance(error, PipelineError):
        return error
    if isinstance(error, TimeoutError):
        return network_timeout(url or "unknown", 0)
    return unknown_error(error, url=url)


class RecoveryAttemptCounter:
    """Per-run record of recovery attempts, keyed by error code."""

    def __init__(self, max_attempts: int = MAX_RECOVERY_ATTEMPTS):
        self.max_attempts = max_attempts
        self._attempts: Counter = Counter()
        self.total_errors = 0

    def get(self, code: ErrorCode) -> int:
        return self._attempts[code]

    def increment(self, code: ErrorCode) -> int:
        self._attempts[code] += 1
        return self._attempts[code]

    def exhausted(self, code: ErrorCode) -> bool:
        return self._attempts[code] >= self.max_attempts

    def reset(self) -> None:
        self._attempts.clear()
        self.total_errors = 0

    def as_dict(self) -> Dict[str, int]:
        return {code.value: count for code, count in self._attempts.items()}


@dataclass
class RecoveryOutcome:
    """Result of handling one error."""
    handled: bool
    recovered: bool
    error: PipelineError
    suggestions: List[RecoverySuggestion] = field(default_factory=list)
    fallback_model: Optional[str] = None
    attempt: int = 0


class ErrorRecoveryEngine:
    """
    Centralized error handling with per-code recovery strategies.

    Recovery dispatch is a table keyed by ErrorCode; every code has an entry.
    Strategies return True when the pipeline may continue.
    """

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_error: Optional[Callable[[PipelineError], None]] = None,
        log_errors: bool = True,
        verbose: bool = False,
    ):
        """
        Initialize the recovery engine.

        Args:
            sleep: Coroutine used for backoff waits (seconds)
            on_error: Optional hook called with every normalized error
            log_errors: Whether to log handled errors
            verbose: Include stack traces and extra context in logs
        """
        self._sleep = sleep
        self._on_error = on_error
        self.log_errors = log_errors
        self.verbose = verbose

        self._strategies: Dict[ErrorCode, Callable[[PipelineError, int], Awaitable[bool]]] = {
            ErrorCode.IMAGE_DOWNLOAD_FAILED: self._recover_from_image_error,
            ErrorCode.LLM_SERVER_UNREACHABLE: self._recover_from_llm_unreachable,
            ErrorCode.MODEL_NOT_FOUND: self._recover_from_model_not_found,
            ErrorCode.NETWORK_TIMEOUT: self._recover_from_network_timeout,
            ErrorCode.PAYWALL_DETECTED: self._no_automatic_fix,
            ErrorCode.COOKIE_EXPIRED: self._no_automatic_fix,
            ErrorCode.CONFIG_VALIDATION_ERROR: self._no_automatic_fix,
            ErrorCode.INSUFFICIENT_MEMORY: self._no_automatic_fix,
            ErrorCode.FILE_SYSTEM_ERROR: self._no_automatic_fix,
            ErrorCode.UNKNOWN: self._no_automatic_fix,
        }
        missing = set(ErrorCode) - set(self._strategies)
        if missing:
            raise RuntimeError(f"No recovery strategy for: {sorted(c.value for c in missing)}")

    async def handle(
        self,
        error: BaseException,
        counter: RecoveryAttemptCounter,
        context: Optional[Dict[str, Any]] = None,
    ) -> RecoveryOutcome:
        """
        Handle any error with the recovery strategy for its code.

        Args:
            error: Raised exception (PipelineError or anything else)
            counter: Attempt counter of the current pipeline run
            context: Extra information to include in logs

        Returns:
            RecoveryOutcome; `recovered` is True when the run may continue
        """
        counter.total_errors += 1
        pipeline_error = normalize_error(error, url=(context or {}).get("url"))

        if self._on_error:
            self._on_error(pipeline_error)

        outcome = RecoveryOutcome(
            handled=True,
            recovered=False,
            error=pipeline_error,
            suggestions=list(pipeline_error.suggestions),
        )

        if pipeline_error.recoverable:
            outcome.recovered = await self._attempt_recovery(pipeline_error, counter, outcome)

        if self.log_errors:
            self._log(outcome, context)

        return outcome

    async def _attempt_recovery(
        self,
        error: PipelineError,
        counter: RecoveryAttemptCounter,
        outcome: RecoveryOutcome,
    ) -> bool:
        if counter.exhausted(error.code):
            logger.warning(f"Max recovery attempts reached for {error.code.value}")
            return False

        attempt = counter.increment(error.code)
        outcome.attempt = attempt

        if error.code == ErrorCode.MODEL_NOT_FOUND:
            available = error.context.details.get("available_models") or []
            outcome.fallback_model = available[0] if available else None

        try:
            return await self._strategies[error.code](error, attempt)
        except Exception as e:
            logger.error(f"Recovery attempt failed for {error.code.value}: {e}")
            return False

    async def _recover_from_image_error(self, error: PipelineError, attempt: int) -> bool:
        logger.debug(f"Skipping failed image: {error.context.image_src}")
        return True

    async def _recover_from_llm_unreachable(self, error: PipelineError, attempt: int) -> bool:
        logger.debug("LLM server not available, article will be saved without summary")
        return True

    async def _recover_from_model_not_found(self, error: PipelineError, attempt: int) -> bool:
        available = error.context.details.get("available_models") or []
        if available:
            logger.debug(f"Model {error.context.model_name!r} not found, falling back to {available[0]}")
        else:
            logger.debug("No models available, skipping summarization")
        return True

    async def _recover_from_network_timeout(self, error: PipelineError, attempt: int) -> bool:
        backoff_ms = network_backoff_ms(attempt)
        logger.warning(
            f"Network timeout (attempt {attempt}/{MAX_RECOVERY_ATTEMPTS}), "
            f"retrying in {backoff_ms / 1000:.0f}s"
        )
        await self._sleep(backoff_ms / 1000)
        return True

    async def _no_automatic_fix(self, error: PipelineError, attempt: int) -> bool:
        return False

    def _log(self, outcome: RecoveryOutcome, context: Optional[Dict[str, Any]]) -> None:
        error = outcome.error
        if outcome.recovered:
            logger.warning(f"[{error.code.value}] {error.message} (recovered)")
        else:
            logger.error(format_error_message(error, include_stack=self.verbose))
        if context and self.verbose:
            logger.debug(f"Additional context: {context}")

    @staticmethod
    def get_stats(counter: RecoveryAttemptCounter) -> dict:
        """Get error statistics for a run."""
        return {
            "total_errors": counter.total_errors,
            "recovery_attempts": counter.as_dict(),
        }


def format_error_message(error: PipelineError, include_stack: bool = False) -> str:
    """Render an error with its context and remediation steps."""
    rule = "=" * 60
    lines = [rule, f"Error: {error.code.value}", rule, "", error.message, ""]

    context = error.context.to_dict()
    context.pop("details", None)
    if context:
        lines.append("Context:")
        for key, value in context.items():
            lines.append(f"  - {key}: {value}")
        lines.append("")

    if error.suggestions:
        lines.append("How to fix:")
        for index, suggestion in enumerate(error.suggestions, start=1):
            lines.append(f"  {index}. {suggestion.action}")
            lines.append(f"     {suggestion.description}")
            if suggestion.command:
                lines.append(f"     $ {suggestion.command}")
        lines.append("")

    if include_stack and error.__traceback__ is not None:
        import traceback
        lines.append("Stack trace:")
        lines.append("".join(traceback.format_tb(error.__traceback__)))

    lines.append(rule)
    return "\n".join(lines)
