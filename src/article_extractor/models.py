"""Data models for the extraction pipeline."""

import time
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, List, Optional

from article_extractor.constants import WORDS_PER_MINUTE

if TYPE_CHECKING:
    from article_extractor.errors import PipelineError


class PaywallVerdict(str, Enum):
    """Classification of whether rendered page content appears gated."""
    NONE = "none"
    SOFT_OVERLAY = "soft-overlay"
    CLIENT_HARD = "client-hard"
    SERVER_SIDE = "server-side"


class LoaderState(str, Enum):
    """States a page load moves through."""
    IDLE = "idle"
    LOADING = "loading"
    RETRYING = "retrying"
    LOADED = "loaded"
    FAILED = "failed"
    PAYWALL_CHECKED = "paywall-checked"


@dataclass(frozen=True)
class Cookie:
    """Authentication cookie. `expires` is epoch milliseconds."""

    name: str
    value: str
    domain: str
    path: str = "/"
    secure: bool = True
    http_only: bool = True
    same_site: str = "Lax"
    expires: Optional[float] = None

    def is_expired(self, now_ms: Optional[float] = None) -> bool:
        """Return True if the cookie carries an expiry that has passed."""
        if not self.expires:
            return False
        now_ms = now_ms if now_ms is not None else time.time() * 1000
        return self.expires < now_ms

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "secure": self.secure,
            "httpOnly": self.http_only,
            "sameSite": self.same_site,
            "expires": self.expires,
        }


@dataclass(frozen=True)
class RemoteImage:
    """Image reference discovered on a page."""

    src: str
    alt: Optional[str] = None
    title: Optional[str] = None
    srcset: Optional[str] = None
    is_feature_image: bool = False


@dataclass(frozen=True)
class LocalImage(RemoteImage):
    """Downloaded, hashed and optimized image stored on disk."""

    local_path: str = ""
    relative_path: str = ""
    hash: str = ""
    optimized: bool = False
    width: Optional[int] = None
    height: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ModelCandidate:
    """A model known to the LLM server."""

    name: str
    size: int = 0
    digest: str = ""
    modified_at: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict) -> "ModelCandidate":
        return cls(
            name=data.get("name", ""),
            size=int(data.get("size") or 0),
            digest=data.get("digest", ""),
            modified_at=data.get("modified_at") or data.get("modifiedAt"),
        )


@dataclass(frozen=True)
class SummarizationResult:
    """Outcome of one summary generation. `processing_time` is milliseconds."""

    summary: str
    model: str
    tokens_used: Optional[int] = None
    processing_time: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ArticleMetadata:
    """Metadata describing the extracted article."""

    source_url: str
    title: str = "Untitled Article"
    author: Optional[str] = None
    publish_date: Optional[datetime] = None
    description: Optional[str] = None
    image_url: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["publish_date"] = self.publish_date.isoformat() if self.publish_date else None
        return data


@dataclass
class ExtractedContent:
    """Article body extracted from a rendered page."""

    metadata: ArticleMetadata
    html: str = ""
    text: str = ""
    container_selector: Optional[str] = None

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    @property
    def reading_time(self) -> int:
        """Reading time in minutes at 200 words per minute."""
        return -(-self.word_count // WORDS_PER_MINUTE)


@dataclass
class ImageAcquisitionReport:
    """Kept images plus what was dropped along the way."""

    images: List[LocalImage] = field(default_factory=list)
    failures: List["PipelineError"] = field(default_factory=list)
    duplicates: int = 0

    @property
    def dropped(self) -> int:
        return len(self.failures) + self.duplicates


@dataclass(frozen=True)
class ArticleOutput:
    """Markdown files written for one article."""

    directory: str
    original_path: str
    summary_path: Optional[str] = None

    @property
    def image_directory(self) -> str:
        return str(Path(self.directory) / "images")

    def to_dict(self) -> dict:
        data = asdict(self)
        data["image_directory"] = self.image_directory
        return data


@dataclass
class PipelineResult:
    """Best-effort result of one pipeline run."""

    url: str
    final_url: Optional[str] = None
    paywall: PaywallVerdict = PaywallVerdict.NONE
    content: Optional[ExtractedContent] = None
    images: List[LocalImage] = field(default_factory=list)
    summary: Optional[SummarizationResult] = None
    suppressed_errors: List["PipelineError"] = field(default_factory=list)
    dropped_images: int = 0
    output: Optional[ArticleOutput] = None
    duration: float = 0.0

    @property
    def degraded(self) -> bool:
        return bool(self.suppressed_errors)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "url": self.url,
            "final_url": self.final_url,
            "paywall": self.paywall.value,
            "metadata": self.content.metadata.to_dict() if self.content else None,
            "word_count": self.content.word_count if self.content else 0,
            "reading_time": self.content.reading_time if self.content else 0,
            "text": self.content.text if self.content else "",
            "images": [img.to_dict() for img in self.images],
            "summary": self.summary.to_dict() if self.summary else None,
            "suppressed_errors": [err.to_dict() for err in self.suppressed_errors],
            "dropped_images": self.dropped_images,
            "output": self.output.to_dict() if self.output else None,
            "duration": round(self.duration, 3),
        }


@dataclass
class BatchItemResult:
    """Outcome of one URL in a batch run."""

    url: str
    result: Optional[PipelineResult] = None
    error: Optional["PipelineError"] = None

    @property
    def success(self) -> bool:
        return self.result is not None
