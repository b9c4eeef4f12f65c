from dotenv import load_dotenv
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional
import json
import os

from pydantic import BaseModel, Field, ValidationError

from article_extractor.browser_config import BrowserConfig
from article_extractor.constants import (
    DEFAULT_FALLBACK_MODELS,
    DEFAULT_IMAGE_MAX_WIDTH,
    DEFAULT_IMAGE_QUALITY,
    DEFAULT_IMAGE_TIMEOUT_MS,
    DEFAULT_LLM_BASE_URL,
    DEFAULT_LLM_TIMEOUT_MS,
    DEFAULT_MAX_CONCURRENT_DOWNLOADS,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_PRIMARY_MODEL,
    DEFAULT_TEMPERATURE,
)
from article_extractor.errors import config_validation, file_system_error

load_dotenv()  # Loads variables from .env file


class Settings:
    """
    Manages application settings loaded from environment variables.
    """
    CONFIG_FILE = os.getenv("ARTICLE_EXTRACTOR_CONFIG")


settings = Settings()


SummaryLength = Literal["short", "medium", "long"]


class LLMConfig(BaseModel):
    """Local LLM server and summarization settings."""

    base_url: str = Field(
        default=DEFAULT_LLM_BASE_URL,
        description="Base URL of the Ollama server",
        pattern=r"^https?://",
    )

    primary_model: str = Field(
        default=DEFAULT_PRIMARY_MODEL,
        description="Primary model to use for summarization",
        min_length=1,
    )

    fallback_models: List[str] = Field(
        default_factory=lambda: list(DEFAULT_FALLBACK_MODELS),
        description="Fallback models tried in order if the primary fails"
    )

    summary_length: SummaryLength = Field(
        default="medium",
        description="Desired length of generated summaries"
    )

    temperature: float = Field(
        default=DEFAULT_TEMPERATURE,
        description="Model temperature (creativity vs consistency)",
        ge=0,
        le=1
    )

    timeout: int = Field(
        default=DEFAULT_LLM_TIMEOUT_MS,
        description="Maximum time to wait for an LLM response in milliseconds",
        ge=10000,
        le=600000
    )

    streaming: bool = Field(
        default=False,
        description="Stream summary fragments as they are generated"
    )

    inventory_ttl: Optional[float] = Field(
        default=None,
        description="Seconds before the cached model list is refetched (None = never)",
        gt=0
    )

    class Config:
        """Pydantic model configuration."""
        validate_assignment = True


class ImageConfig(BaseModel):
    """Image download and optimization settings."""

    max_width: int = Field(default=DEFAULT_IMAGE_MAX_WIDTH, description="Maximum width for resized images", ge=100, le=5000)
    quality: int = Field(default=DEFAULT_IMAGE_QUALITY, description="JPEG quality", ge=1, le=100)
    max_concurrent: int = Field(
        default=DEFAULT_MAX_CONCURRENT_DOWNLOADS,
        description="Images downloaded concurrently per batch",
        ge=1,
        le=20
    )
    timeout: int = Field(default=DEFAULT_IMAGE_TIMEOUT_MS, description="Per-image download timeout in milliseconds", ge=1000, le=120000)

    class Config:
        """Pydantic model configuration."""
        validate_assignment = True


class OutputConfig(BaseModel):
    """Where extracted articles are written."""

    base_dir: str = Field(default=DEFAULT_OUTPUT_DIR, description="Base directory for extracted articles", min_length=1)


class LoggingConfig(BaseModel):
    """Log level and optional log file."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    file: Optional[str] = None


class AppConfig(BaseModel):
    """Complete application configuration."""

    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    images: ImageConfig = Field(default_factory=ImageConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        """Validate a nested configuration dict.

        Raises:
            PipelineError: CONFIG_VALIDATION_ERROR listing every invalid field
        """
        try:
            return cls(**data)
        except ValidationError as e:
            problems = [
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
            config_key = ".".join(str(part) for part in e.errors()[0]["loc"]) if problems else "configuration"
            raise config_validation(config_key, "; ".join(problems)) from e

    @classmethod
    def from_file(cls, path: str) -> "AppConfig":
        """Load configuration from a JSON file.

        Args:
            path: Path to JSON config file

        Returns:
            AppConfig instance
        """
        return cls.from_dict(_read_config_file(path))

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load configuration from environment variables.

        Returns:
            AppConfig: Configuration instance with values from environment
        """
        return cls.from_dict(_apply_env_overrides({}))

    def to_dict(self) -> dict:
        return self.model_dump()


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from an optional JSON file, then apply env overrides.

    Args:
        path: Config file path (defaults to $ARTICLE_EXTRACTOR_CONFIG)

    Returns:
        Validated AppConfig
    """
    path = path or settings.CONFIG_FILE
    data = _read_config_file(path) if path else {}
    return AppConfig.from_dict(_apply_env_overrides(data))


def _read_config_file(path: str) -> Dict[str, Any]:
    file_path = Path(path)
    try:
        with open(file_path, 'r') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise config_validation("configuration", f"{path} is not valid JSON: {e}", "JSON object") from e
    except OSError as e:
        raise file_system_error("read config", str(file_path), e) from e

    if not isinstance(data, dict):
        raise config_validation("configuration", f"{path} must contain a JSON object", "JSON object")
    return data


def _parse_bool(value: str) -> bool:
    return value.strip().lower() == "true"


def _parse_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# (env var, section, field, parser)
ENV_OVERRIDES: List[tuple] = [
    ("BROWSER_HEADLESS", "browser", "headless", _parse_bool),
    ("BROWSER_TIMEOUT", "browser", "timeout", int),
    ("BROWSER_RETRIES", "browser", "retries", int),
    ("OLLAMA_BASE_URL", "llm", "base_url", str),
    ("OLLAMA_PRIMARY_MODEL", "llm", "primary_model", str),
    ("OLLAMA_FALLBACK_MODELS", "llm", "fallback_models", _parse_list),
    ("SUMMARY_LENGTH", "llm", "summary_length", str),
    ("LLM_TEMPERATURE", "llm", "temperature", float),
    ("OLLAMA_TIMEOUT", "llm", "timeout", int),
    ("IMAGE_MAX_WIDTH", "images", "max_width", int),
    ("IMAGE_QUALITY", "images", "quality", int),
    ("IMAGE_MAX_CONCURRENT", "images", "max_concurrent", int),
    ("OUTPUT_DIR", "output", "base_dir", str),
    ("LOG_LEVEL", "logging", "level", str.upper),
    ("LOG_FILE", "logging", "file", str),
]


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    merged = {section: dict(values) for section, values in data.items() if isinstance(values, dict)}
    merged.update({key: value for key, value in data.items() if not isinstance(value, dict)})

    for env_var, section, field_name, parser in ENV_OVERRIDES:
        raw = os.getenv(env_var)
        if raw is None or raw == "":
            continue
        merged.setdefault(section, {})[field_name] = _parse_env(env_var, raw, parser)

    return merged


def _parse_env(env_var: str, raw: str, parser: Callable[[str], Any]) -> Any:
    try:
        return parser(raw)
    except ValueError as e:
        raise config_validation(env_var, f"cannot parse {raw!r}: {e}") from e
