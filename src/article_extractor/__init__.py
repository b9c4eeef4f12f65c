"""Article extraction from authenticated pages with local LLM summarization."""

__version__ = "0.1.0"

from article_extractor.browser_config import BrowserConfig
from article_extractor.config import (
    AppConfig,
    ImageConfig,
    LLMConfig,
    load_config,
    settings,
)
from article_extractor.errors import (
    ErrorCode,
    ErrorContext,
    PipelineError,
    RecoverySuggestion,
)
from article_extractor.image_downloader import ImageDownloader
from article_extractor.image_extractor import ImageExtractor
from article_extractor.markdown_output import ArticleWriter
from article_extractor.models import (
    ArticleMetadata,
    ArticleOutput,
    BatchItemResult,
    Cookie,
    ExtractedContent,
    LocalImage,
    ModelCandidate,
    PaywallVerdict,
    PipelineResult,
    RemoteImage,
    SummarizationResult,
)
from article_extractor.page_loader import PageLoader, PageLoadOptions, PageLoadResult
from article_extractor.pipeline import PipelineCoordinator, PipelineOptions, build_pipeline
from article_extractor.recovery import (
    ErrorRecoveryEngine,
    RecoveryAttemptCounter,
    RecoveryOutcome,
    format_error_message,
)
from article_extractor.summarizer import SummarizationEngine, SummarizationOptions

# Infrastructure
from article_extractor.infrastructure import PlaywrightBackend

__all__ = [
    "AppConfig",
    "ArticleMetadata",
    "ArticleOutput",
    "ArticleWriter",
    "BatchItemResult",
    "BrowserConfig",
    "Cookie",
    "ErrorCode",
    "ErrorContext",
    "ErrorRecoveryEngine",
    "ExtractedContent",
    "ImageConfig",
    "ImageDownloader",
    "ImageExtractor",
    "LLMConfig",
    "LocalImage",
    "ModelCandidate",
    "PageLoadOptions",
    "PageLoadResult",
    "PageLoader",
    "PaywallVerdict",
    "PipelineCoordinator",
    "PipelineError",
    "PipelineOptions",
    "PipelineResult",
    "PlaywrightBackend",
    "RecoveryAttemptCounter",
    "RecoveryOutcome",
    "RecoverySuggestion",
    "RemoteImage",
    "SummarizationEngine",
    "SummarizationOptions",
    "SummarizationResult",
    "build_pipeline",
    "format_error_message",
    "load_config",
    "settings",
]
