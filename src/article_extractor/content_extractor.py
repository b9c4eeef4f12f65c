"""Article text and metadata extraction from rendered HTML."""

import logging
from datetime import datetime
from typing import Optional

from bs4 import BeautifulSoup, Tag

from article_extractor.constants import ARTICLE_SELECTORS, BOILERPLATE_SELECTORS
from article_extractor.models import ArticleMetadata, ExtractedContent

logger = logging.getLogger(__name__)


HIDDEN_SELECTORS = '[style*="display:none"], [style*="display: none"], [hidden]'


def identify_article_container(soup: BeautifulSoup) -> Optional[str]:
    """Return the first article selector present in the document."""
    for selector in ARTICLE_SELECTORS:
        if soup.select_one(selector) is not None:
            return selector
    return None


def _meta(soup: BeautifulSoup, name: str) -> Optional[str]:
    tag = soup.find("meta", attrs={"name": name}) or soup.find("meta", attrs={"property": name})
    if tag and tag.get("content"):
        return tag["content"].strip()
    return None


def _text_of(soup: BeautifulSoup, selector: str) -> Optional[str]:
    tag = soup.select_one(selector)
    if tag is None:
        return None
    text = tag.get_text(strip=True)
    return text or None


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable publish date: {value!r}")
        return None


def extract_metadata(soup: BeautifulSoup, url: str) -> ArticleMetadata:
    title = (
        _meta(soup, "og:title")
        or _text_of(soup, "h1")
        or (soup.title.get_text(strip=True) if soup.title else None)
    )

    author = _meta(soup, "author") or _text_of(soup, '[itemprop="author"]') or _text_of(soup, ".author")

    published = _meta(soup, "article:published_time") or _meta(soup, "datePublished")
    if not published:
        tag = soup.select_one('[itemprop="datePublished"]')
        published = tag.get("content") if tag else None

    return ArticleMetadata(
        source_url=url,
        title=title or "Untitled Article",
        author=author,
        publish_date=_parse_date(published),
        description=_meta(soup, "og:description") or _meta(soup, "description"),
        image_url=_meta(soup, "og:image"),
    )


def clean_html(fragment: Tag) -> str:
    """Strip boilerplate, hidden and empty elements from a fragment (in place)."""
    for selector in BOILERPLATE_SELECTORS:
        for element in fragment.select(selector):
            element.decompose()

    for element in fragment.select(HIDDEN_SELECTORS):
        if not element.decomposed:
            element.decompose()

    for element in fragment.find_all(["p", "div"]):
        if element.decomposed:
            continue
        if not element.get_text(strip=True) and element.find("img") is None:
            element.decompose()

    return fragment.decode_contents().strip()


def html_to_text(html: str) -> str:
    """Plain text with one trimmed, non-empty line per block."""
    text = BeautifulSoup(html, "html.parser").get_text("\n")
    return "\n".join(line.strip() for line in text.splitlines() if line.strip())


def extract_content(html: str, url: str, container_selector: Optional[str] = None) -> ExtractedContent:
    """
    Extract article metadata, cleaned HTML and text.

    Args:
        html: Rendered page HTML
        url: Source URL recorded in the metadata
        container_selector: Article container; detected when omitted

    Returns:
        ExtractedContent
    """
    soup = BeautifulSoup(html, "html.parser")
    metadata = extract_metadata(soup, url)

    selector = container_selector or identify_article_container(soup)
    container = soup.select_one(selector) if selector else None
    if container is None:
        container = soup.body or soup
        if container_selector:
            logger.warning(f"Selector {container_selector!r} not found, using page body")
        selector = None

    cleaned = clean_html(container)
    text = html_to_text(cleaned)

    content = ExtractedContent(metadata=metadata, html=cleaned, text=text, container_selector=selector)
    logger.info(f"Extracted {content.word_count} words from {url} (container={selector or 'body'})")
    return content
