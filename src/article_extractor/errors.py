"""
Error taxonomy for the extraction pipeline.

Every failure that crosses a stage boundary is represented by a single
exception type, PipelineError, tagged with an ErrorCode from a closed set.
The code decides how the recovery engine treats the failure; the context
carries whatever the failing stage knew (url, model, image src, ...), and the
suggestions are human-readable remediation steps shown to the user.

Factory functions below build the error for each code with its standard
message and suggestions:

    raise network_timeout(url, timeout_ms=30000)
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ErrorCode(str, Enum):
    """Closed set of pipeline failure kinds."""
    PAYWALL_DETECTED = "PAYWALL_DETECTED"
    COOKIE_EXPIRED = "COOKIE_EXPIRED"
    LLM_SERVER_UNREACHABLE = "OLLAMA_NOT_RUNNING"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    INSUFFICIENT_MEMORY = "INSUFFICIENT_MEMORY"
    IMAGE_DOWNLOAD_FAILED = "IMAGE_DOWNLOAD_FAILED"
    NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    FILE_SYSTEM_ERROR = "FILE_SYSTEM_ERROR"
    CONFIG_VALIDATION_ERROR = "CONFIG_VALIDATION_ERROR"
    UNKNOWN = "UNKNOWN_ERROR"


# Codes that require user intervention (fresh credentials, fixed config)
FATAL_CODES = frozenset({
    ErrorCode.PAYWALL_DETECTED,
    ErrorCode.COOKIE_EXPIRED,
    ErrorCode.CONFIG_VALIDATION_ERROR,
})


@dataclass(frozen=True)
class RecoverySuggestion:
    """A remediation step shown alongside an error."""
    action: str
    description: str
    command: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"action": self.action, "description": self.description}
        if self.command:
            data["command"] = self.command
        return data


@dataclass(frozen=True)
class ErrorContext:
    """Structured information about where a failure happened."""
    url: Optional[str] = None
    cookie_path: Optional[str] = None
    model_name: Optional[str] = None
    image_src: Optional[str] = None
    file_path: Optional[str] = None
    config_key: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {
            key: value
            for key, value in (
                ("url", self.url),
                ("cookie_path", self.cookie_path),
                ("model_name", self.model_name),
                ("image_src", self.image_src),
                ("file_path", self.file_path),
                ("config_key", self.config_key),
            )
            if value is not None
        }
        if self.details:
            data["details"] = dict(self.details)
        return data


class PipelineError(Exception):
    """
    A classified pipeline failure.

    All attributes are fixed at construction. In particular `recoverable`
    decides whether the recovery engine may act on the error at all and is
    never changed afterwards.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        context: Optional[ErrorContext] = None,
        suggestions: Sequence[RecoverySuggestion] = (),
        recoverable: bool = True,
        timestamp: Optional[datetime] = None,
    ):
        super().__init__(message)
        self._code = ErrorCode(code)
        self._message = message
        self._context = context or ErrorContext()
        self._suggestions = tuple(suggestions)
        self._recoverable = recoverable
        self._timestamp = timestamp or datetime.now()

    @property
    def code(self) -> ErrorCode:
        return self._code

    @property
    def message(self) -> str:
        return self._message

    @property
    def context(self) -> ErrorContext:
        return self._context

    @property
    def suggestions(self) -> tuple:
        return self._suggestions

    @property
    def recoverable(self) -> bool:
        return self._recoverable

    @property
    def timestamp(self) -> datetime:
        return self._timestamp

    @property
    def is_fatal(self) -> bool:
        return self._code in FATAL_CODES

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "code": self._code.value,
            "message": self._message,
            "context": self._context.to_dict(),
            "suggestions": [s.to_dict() for s in self._suggestions],
            "recoverable": self._recoverable,
            "timestamp": self._timestamp.isoformat(),
        }

    def __repr__(self) -> str:
        return f"PipelineError(code={self._code.value!r}, message={self._message!r})"


# =============================================================================
# Factories
# =============================================================================

def paywall_detected(url: str, paywall_type: Optional[str] = None) -> PipelineError:
    return PipelineError(
        ErrorCode.PAYWALL_DETECTED,
        f"Paywall detected on {url}. Unable to access article content.",
        ErrorContext(url=url, details={"paywall_type": paywall_type}),
        [
            RecoverySuggestion(
                "Update cookies",
                "Your authentication cookies may be expired or invalid.",
                "Export fresh cookies from your browser and update the cookies file",
            ),
            RecoverySuggestion(
                "Verify subscription",
                "Ensure you have an active subscription to the publication.",
            ),
            RecoverySuggestion(
                "Try alternative URL",
                "Some articles may have alternative URLs (e.g., AMP versions).",
            ),
        ],
        recoverable=False,
    )


def cookie_expired(
    cookie_path: Optional[str] = None,
    expired_count: Optional[int] = None,
    expired_names: Optional[List[str]] = None,
) -> PipelineError:
    message = "Session cookies have expired."
    if expired_count:
        message += f" Found {expired_count} expired cookies."
    return PipelineError(
        ErrorCode.COOKIE_EXPIRED,
        message,
        ErrorContext(
            cookie_path=cookie_path,
            details={"expired_count": expired_count, "expired_names": expired_names or []},
        ),
        [
            RecoverySuggestion(
                "Export fresh cookies",
                "Export new cookies from your browser where you are logged in.",
                'Use a browser extension like "Get cookies.txt"',
            ),
            RecoverySuggestion(
                "Check cookie format",
                "Ensure cookies are in Netscape or JSON format.",
            ),
            RecoverySuggestion(
                "Verify login status",
                "Make sure you are logged in to the publication in your browser.",
            ),
        ],
        recoverable=False,
    )


def llm_server_unreachable(base_url: str, original_error: Optional[BaseException] = None) -> PipelineError:
    return PipelineError(
        ErrorCode.LLM_SERVER_UNREACHABLE,
        f"Cannot connect to LLM server at {base_url}. Server may not be running.",
        ErrorContext(details={
            "base_url": base_url,
            "original_error": str(original_error) if original_error else None,
        }),
        [
            RecoverySuggestion("Start the LLM server", "Ollama must be running to generate summaries.", "ollama serve"),
            RecoverySuggestion("Check Ollama installation", "Verify Ollama is installed on your system.", "ollama --version"),
            RecoverySuggestion(
                "Verify server URL",
                f"Check that Ollama is running on {base_url}",
                f"curl {base_url.rstrip('/')}/api/tags",
            ),
            RecoverySuggestion(
                "Skip summarization",
                "You can extract articles without summarization using --no-summary",
            ),
        ],
    )


def model_not_found(model_name: str, available_models: Optional[List[str]] = None) -> PipelineError:
    available_models = list(available_models or [])
    message = f'Model "{model_name}" not found.'
    if available_models:
        message += f" Available models: {', '.join(available_models)}"
    return PipelineError(
        ErrorCode.MODEL_NOT_FOUND,
        message,
        ErrorContext(model_name=model_name, details={"available_models": available_models}),
        [
            RecoverySuggestion("Pull the model", f"Download the {model_name} model.", f"ollama pull {model_name}"),
            RecoverySuggestion("List available models", "See which models are already installed.", "ollama list"),
            RecoverySuggestion(
                "Use available model",
                f"Try one of these: {', '.join(available_models[:3])}"
                if available_models
                else 'Choose from models shown in "ollama list"',
            ),
        ],
    )


def insufficient_memory(model_name: str, required_memory: Optional[str] = None) -> PipelineError:
    message = f'Insufficient memory to load model "{model_name}".'
    if required_memory:
        message += f" Requires ~{required_memory}"
    return PipelineError(
        ErrorCode.INSUFFICIENT_MEMORY,
        message,
        ErrorContext(model_name=model_name, details={"required_memory": required_memory}),
        [
            RecoverySuggestion(
                "Use smaller model",
                "Try a more lightweight model that fits in your system memory.",
                "Use --model qwen2.5:0.5b or --model tinyllama",
            ),
            RecoverySuggestion("Close other applications", "Free up system memory by closing unnecessary applications."),
            RecoverySuggestion("Use quantized model", "Quantized models (Q4, Q5) use less memory.", "ollama pull llama3.2:1b-q4_0"),
        ],
    )


def image_download_failed(
    image_src: str,
    reason: Optional[str] = None,
    original_error: Optional[BaseException] = None,
) -> PipelineError:
    detail = reason or (str(original_error) if original_error else "")
    return PipelineError(
        ErrorCode.IMAGE_DOWNLOAD_FAILED,
        f"Failed to download image: {image_src}. {detail}".strip(),
        ErrorContext(image_src=image_src, details={
            "reason": reason,
            "original_error": str(original_error) if original_error else None,
        }),
        [
            RecoverySuggestion("Continue without image", "Article will be saved without this image."),
            RecoverySuggestion("Check network connection", "Ensure you have internet connectivity."),
            RecoverySuggestion(
                "Verify image URL",
                "The image URL may be invalid or the CDN may be blocking requests.",
            ),
        ],
    )


def network_timeout(url: str, timeout_ms: float) -> PipelineError:
    return PipelineError(
        ErrorCode.NETWORK_TIMEOUT,
        f"Request to {url} timed out after {int(timeout_ms)}ms.",
        ErrorContext(url=url, details={"timeout": timeout_ms}),
        [
            RecoverySuggestion(
                "Increase timeout",
                "Try increasing the timeout for slow networks.",
                "Set BROWSER_TIMEOUT=60000 for a 60 second timeout",
            ),
            RecoverySuggestion("Check network connection", "Verify your internet connection is stable."),
            RecoverySuggestion("Retry request", "The server may be temporarily slow or unavailable."),
        ],
    )


def file_system_error(
    operation: str,
    file_path: str,
    original_error: Optional[BaseException] = None,
) -> PipelineError:
    detail = str(original_error) if original_error else ""
    return PipelineError(
        ErrorCode.FILE_SYSTEM_ERROR,
        f"File system error during {operation}: {file_path}. {detail}".strip(),
        ErrorContext(file_path=file_path, details={"operation": operation, "original_error": detail or None}),
        [
            RecoverySuggestion(
                "Check permissions",
                "Ensure you have write permissions to the output directory.",
                "ls -la",
            ),
            RecoverySuggestion("Check disk space", "Verify sufficient disk space is available.", "df -h"),
            RecoverySuggestion("Verify path exists", "Ensure parent directories exist and are writable."),
        ],
    )


def config_validation(
    config_key: str,
    reason: str,
    expected_format: Optional[str] = None,
) -> PipelineError:
    return PipelineError(
        ErrorCode.CONFIG_VALIDATION_ERROR,
        f'Invalid configuration for "{config_key}": {reason}',
        ErrorContext(config_key=config_key, details={"reason": reason, "expected_format": expected_format}),
        [
            RecoverySuggestion("Check configuration file", "Review your config JSON file or .env file."),
            RecoverySuggestion(
                "Use default value",
                f"Expected format: {expected_format}" if expected_format else "Check documentation for correct format.",
            ),
            RecoverySuggestion("Reset to defaults", "Delete custom config to use default values."),
        ],
        recoverable=False,
    )


def unknown_error(error: BaseException, url: Optional[str] = None) -> PipelineError:
    return PipelineError(
        ErrorCode.UNKNOWN,
        str(error) or type(error).__name__,
        ErrorContext(url=url, details={"original_error": type(error).__name__}),
        [
            RecoverySuggestion("Check logs", "Review error logs for more details."),
            RecoverySuggestion("Report issue", "This may be an unexpected error. Consider reporting it."),
        ],
    )


def all_models_failed(
    models_tried: List[str],
    last_error: Optional[PipelineError] = None,
    available_models: Optional[List[str]] = None,
) -> PipelineError:
    """Aggregate failure of a summarization fallback chain.

    Keeps the code of the last underlying failure so recovery treats it the
    same way; when no candidate was even available the chain failed because
    no model was found.
    """
    last_message = last_error.message if last_error else "Unknown error"
    code = last_error.code if last_error else ErrorCode.MODEL_NOT_FOUND
    suggestions = last_error.suggestions if last_error else (
        RecoverySuggestion("List available models", "See which models are already installed.", "ollama list"),
    )
    return PipelineError(
        code,
        f"All summarization models failed. Last error: {last_message}",
        ErrorContext(
            model_name=models_tried[0] if models_tried else None,
            details={
                "models_tried": list(models_tried),
                "available_models": list(available_models or []),
            },
        ),
        suggestions,
        recoverable=last_error.recoverable if last_error else True,
    )
