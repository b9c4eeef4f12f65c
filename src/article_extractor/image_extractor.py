"""Image discovery on rendered pages."""

import logging
import re
from typing import Any, List, Optional
from urllib.parse import urljoin, urlparse

from article_extractor.constants import IMAGE_EXTENSIONS
from article_extractor.models import RemoteImage

logger = logging.getLogger(__name__)


COLLECT_IMAGES_SCRIPT = """
(selector) => {
    const container = selector ? document.querySelector(selector) : document.body;
    if (!container) return [];
    const images = [];
    container.querySelectorAll('img').forEach((img) => {
        const src = img.getAttribute('src') || img.getAttribute('data-src') || '';
        if (src) {
            images.push({
                src: src,
                alt: img.getAttribute('alt'),
                title: img.getAttribute('title'),
                srcset: img.getAttribute('srcset'),
            });
        }
    });
    return images;
}
"""

OG_IMAGE_SCRIPT = """
() => {
    const og = document.querySelector('meta[property="og:image"]');
    return og ? og.getAttribute('content') : null;
}
"""

_LEADING_NUMBER = re.compile(r"^\d*\.?\d+")


def is_valid_image_url(url: str) -> bool:
    """Absolute URL whose path ends with a known image extension."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if not parsed.scheme or not parsed.netloc:
        return False
    return parsed.path.lower().endswith(IMAGE_EXTENSIONS)


def resolve_image_url(image_url: str, page_url: str) -> str:
    """Resolve relative and protocol-relative image URLs against the page."""
    if image_url.startswith(("http://", "https://")):
        return image_url

    page = urlparse(page_url)
    if not page.scheme or not page.netloc:
        return image_url

    if image_url.startswith("//"):
        return f"{page.scheme}:{image_url}"

    return urljoin(page_url, image_url)


def _descriptor_value(descriptor: Optional[str]) -> float:
    if not descriptor:
        return 1.0
    match = _LEADING_NUMBER.match(descriptor)
    return float(match.group()) if match else 0.0


def get_highest_resolution_url(srcset: Optional[str]) -> Optional[str]:
    """Pick the srcset candidate with the largest density / width descriptor."""
    if not srcset:
        return None

    candidates = []
    for entry in srcset.split(","):
        parts = entry.strip().split()
        if not parts:
            continue
        descriptor = parts[1] if len(parts) > 1 else None
        candidates.append((_descriptor_value(descriptor), parts[0]))

    if not candidates:
        return None

    # Stable: ties keep srcset order
    candidates.sort(key=lambda c: c[0], reverse=True)
    return candidates[0][1]


def _to_remote_image(data: dict) -> RemoteImage:
    return RemoteImage(
        src=data.get("src", ""),
        alt=data.get("alt") or None,
        title=data.get("title") or None,
        srcset=data.get("srcset") or None,
        is_feature_image=bool(data.get("is_feature_image")),
    )


class ImageExtractor:
    """Collects image references from a loaded page via a browser backend."""

    def __init__(self, backend: Any):
        self.backend = backend

    async def extract_images(self, page: Any, container_selector: Optional[str] = None) -> List[RemoteImage]:
        """
        Collect <img> elements plus the og:image feature image.

        Returns images in document order with the feature image first,
        deduplicated by src.
        """
        raw = await self.backend.evaluate(page, COLLECT_IMAGES_SCRIPT, container_selector) or []
        images = [_to_remote_image(item) for item in raw]

        og_image = await self.backend.evaluate(page, OG_IMAGE_SCRIPT)
        if og_image and not any(img.src == og_image for img in images):
            images.insert(0, RemoteImage(src=og_image, is_feature_image=True))

        unique = {}
        for img in images:
            unique.setdefault(img.src, img)
        return list(unique.values())

    async def extract_downloadable_images(
        self,
        page: Any,
        page_url: str,
        container_selector: Optional[str] = None,
    ) -> List[RemoteImage]:
        """Discovered images with absolute, highest-resolution, image-typed URLs."""
        images = await self.extract_images(page, container_selector)

        downloadable = []
        for img in images:
            final_url = get_highest_resolution_url(img.srcset) or img.src
            resolved = resolve_image_url(final_url, page_url)
            if is_valid_image_url(resolved):
                downloadable.append(RemoteImage(
                    src=resolved,
                    alt=img.alt,
                    title=img.title,
                    srcset=img.srcset,
                    is_feature_image=img.is_feature_image,
                ))

        logger.debug(f"Discovered {len(images)} images, {len(downloadable)} downloadable")
        return downloadable
