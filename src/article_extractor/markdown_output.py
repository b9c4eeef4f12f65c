"""Markdown output for extracted articles using Jinja2 templates."""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from jinja2 import Environment, FileSystemLoader
from markdownify import markdownify

from article_extractor.constants import FILENAME_SLUG_LENGTH
from article_extractor.errors import file_system_error
from article_extractor.image_extractor import get_highest_resolution_url, resolve_image_url
from article_extractor.models import (
    ArticleMetadata,
    ArticleOutput,
    ExtractedContent,
    LocalImage,
    SummarizationResult,
)

logger = logging.getLogger(__name__)


TEMPLATE_DIR = Path(__file__).parent / "templates"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_BLANK_LINES = re.compile(r"\n{3,}")
_TITLE_LINE = re.compile(r"^title:\s*(.+)$", re.MULTILINE)


def slugify(title: str, max_length: int = FILENAME_SLUG_LENGTH) -> str:
    slug = _NON_ALNUM.sub("_", title.lower()).strip("_")[:max_length].strip("_")
    return slug or "article"


def generate_safe_filename(title: str, kind: str = "original") -> str:
    """`original_<slug>.md` or `summarized_<slug>.md`."""
    return f"{kind}_{slugify(title)}.md"


def unique_path(directory: Path, filename: str) -> Path:
    """Append _1, _2, ... before the extension until the name is free."""
    candidate = directory / filename
    stem, suffix = Path(filename).stem, Path(filename).suffix
    counter = 1
    while candidate.exists():
        candidate = directory / f"{stem}_{counter}{suffix}"
        counter += 1
    return candidate


def localize_images(html: str, images: Sequence[LocalImage], page_url: str) -> str:
    """Point <img> tags at downloaded copies where one exists."""
    if not images:
        return html

    by_src: Dict[str, LocalImage] = {image.src: image for image in images}
    soup = BeautifulSoup(html, "html.parser")

    for img in soup.find_all("img"):
        candidates = [img.get("src"), img.get("data-src"), get_highest_resolution_url(img.get("srcset"))]
        for candidate in filter(None, candidates):
            local = by_src.get(resolve_image_url(candidate, page_url))
            if local is not None:
                img["src"] = local.relative_path
                for attr in ("srcset", "data-src"):
                    if attr in img.attrs:
                        del img[attr]
                break

    return str(soup)


def html_to_markdown(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    markdown = markdownify(str(soup), heading_style="ATX")
    return _BLANK_LINES.sub("\n\n", markdown).strip()


def _hostname(url: str) -> str:
    return urlparse(url).hostname or url


def _long_date(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return f"{value:%B} {value.day}, {value.year}"


def _isodate(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _byline(metadata: ArticleMetadata) -> str:
    parts = []
    if metadata.author:
        parts.append(f"**Author**: {metadata.author}")
    if metadata.publish_date:
        parts.append(f"**Published**: {_long_date(metadata.publish_date)}")
    return " | ".join(parts)


def _feature_image(images: Sequence[LocalImage]) -> Optional[LocalImage]:
    return next((image for image in images if image.is_feature_image), images[0] if images else None)


class ArticleWriter:
    """
    Writes an article as markdown: the full original text plus, when a summary
    exists, a summary file linking back to it. Both live in the article's
    output directory next to its `images/` folder.
    """

    def __init__(self, template_dir: Optional[str] = None):
        """Initialize the writer.

        Args:
            template_dir: Directory containing the markdown templates
        """
        template_path = Path(template_dir) if template_dir else TEMPLATE_DIR
        self.env = Environment(
            loader=FileSystemLoader(str(template_path)),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self.env.filters['hostname'] = _hostname
        self.env.filters['isodate'] = _isodate

    def render_original(
        self,
        content: ExtractedContent,
        images: Sequence[LocalImage],
        extracted_at: Optional[str] = None,
    ) -> str:
        metadata = content.metadata
        body = html_to_markdown(localize_images(content.html, images, metadata.source_url))
        template = self.env.get_template("original.md.j2")
        return template.render(
            metadata=metadata,
            byline=_byline(metadata),
            images=list(images),
            body=body,
            word_count=content.word_count,
            reading_time=content.reading_time,
            extracted_at=extracted_at or _now(),
        )

    def render_summary(
        self,
        content: ExtractedContent,
        summary: SummarizationResult,
        images: Sequence[LocalImage],
        original_file: Optional[str] = None,
        generated_at: Optional[str] = None,
    ) -> str:
        template = self.env.get_template("summary.md.j2")
        return template.render(
            metadata=content.metadata,
            byline=_byline(content.metadata),
            summary=summary,
            feature_image=_feature_image(images),
            original_file=original_file,
            generated_at=generated_at or _now(),
        )

    def write(
        self,
        output_dir: str,
        content: ExtractedContent,
        images: Sequence[LocalImage] = (),
        summary: Optional[SummarizationResult] = None,
    ) -> ArticleOutput:
        """
        Write the markdown files for one article.

        Args:
            output_dir: Article directory (images are expected under images/)
            content: Extracted article
            images: Downloaded images, referenced by relative path
            summary: Summary; no summary file is written without one

        Returns:
            ArticleOutput with the written paths

        Raises:
            PipelineError: FILE_SYSTEM_ERROR when a file cannot be written
        """
        directory = Path(output_dir)
        title = content.metadata.title

        original_path = unique_path(directory, generate_safe_filename(title, "original"))
        summary_path = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            original_path.write_text(self.render_original(content, images), encoding="utf-8")

            if summary is not None:
                summary_path = unique_path(directory, generate_safe_filename(title, "summarized"))
                summary_path.write_text(
                    self.render_summary(content, summary, images, original_file=original_path.name),
                    encoding="utf-8",
                )
        except OSError as e:
            failed = summary_path if summary_path is not None else original_path
            raise file_system_error("write markdown", str(failed), e) from e

        logger.info(f"Wrote {original_path}" + (f" and {summary_path.name}" if summary_path else ""))
        return ArticleOutput(
            directory=str(directory),
            original_path=str(original_path),
            summary_path=str(summary_path) if summary_path else None,
        )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


# ----------------------------------------------------------------------
# Listing and cleanup of the output tree
# ----------------------------------------------------------------------

@dataclass
class ArticleFile:
    """A markdown file found in the output tree."""
    path: Path
    size: int
    modified: datetime
    title: str

    @property
    def name(self) -> str:
        return self.path.name


@dataclass
class CleanupReport:
    """Files removed (or that would be removed) by a cleanup."""
    files: List[Path] = field(default_factory=list)
    bytes_freed: int = 0
    dry_run: bool = False


def read_title(path: Path) -> str:
    """Title from the frontmatter, else derived from the filename."""
    try:
        head = path.read_text(encoding="utf-8")[:2048]
    except OSError:
        head = ""

    if head.startswith("---"):
        match = _TITLE_LINE.search(head)
        if match:
            try:
                title = json.loads(match.group(1))
            except ValueError:
                title = match.group(1).strip()
            if isinstance(title, str) and title:
                return title

    stem = re.sub(r"^(original|summarized)_", "", path.stem)
    return stem.replace("_", " ")


def find_articles(base_dir: str, sort: str = "date", limit: Optional[int] = None) -> List[ArticleFile]:
    """
    Markdown files under base_dir, newest first by default.

    Args:
        base_dir: Output directory to scan (recursively)
        sort: "date" (newest first), "title" or "size" (largest first)
        limit: Maximum number of entries returned

    Returns:
        List of ArticleFile
    """
    root = Path(base_dir)
    if not root.is_dir():
        return []

    articles = []
    for path in root.rglob("*.md"):
        stat = path.stat()
        articles.append(ArticleFile(
            path=path,
            size=stat.st_size,
            modified=datetime.fromtimestamp(stat.st_mtime),
            title=read_title(path),
        ))

    if sort == "title":
        articles.sort(key=lambda a: a.title.lower())
    elif sort == "size":
        articles.sort(key=lambda a: a.size, reverse=True)
    else:
        articles.sort(key=lambda a: a.modified, reverse=True)

    return articles[:limit] if limit else articles


def cleanup_articles(
    base_dir: str,
    days: int,
    dry_run: bool = False,
    now: Optional[float] = None,
) -> CleanupReport:
    """
    Remove files last modified more than `days` days ago.

    Directories left empty are removed too (except base_dir itself).
    With dry_run nothing is deleted; the report lists what would be.
    """
    root = Path(base_dir)
    report = CleanupReport(dry_run=dry_run)
    if not root.is_dir():
        return report

    threshold = (now if now is not None else time.time()) - days * 24 * 60 * 60

    for path in sorted(p for p in root.rglob("*") if p.is_file()):
        stat = path.stat()
        if stat.st_mtime >= threshold:
            continue
        report.files.append(path)
        report.bytes_freed += stat.st_size
        if not dry_run:
            path.unlink()
            logger.debug(f"Deleted {path}")

    if not dry_run:
        # Deepest first so parents empty out before they are checked
        directories = sorted((p for p in root.rglob("*") if p.is_dir()), key=lambda p: len(p.parts), reverse=True)
        for directory in directories:
            if not any(directory.iterdir()):
                directory.rmdir()

    logger.info(f"Cleanup of {root}: {len(report.files)} files, {report.bytes_freed} bytes{' (dry run)' if dry_run else ''}")
    return report
