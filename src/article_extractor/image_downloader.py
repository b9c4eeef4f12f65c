"""
Image acquisition: concurrent download, hashing, deduplication and optimization.

Images are processed in fixed-size batches in discovery order. Each batch runs
concurrently and completes before the next one starts. Per image:

1. Download the bytes with httpx (hard timeout)
2. Write them to a temp file and hash the file with SHA-256
3. Re-encode as JPEG with Pillow, shrinking to the configured max width
4. Remove the temp file

A failing image never fails the whole acquisition; it is logged, reported and
left out. Images whose raw bytes hash to an already kept image are dropped.
"""

import asyncio
import contextlib
import hashlib
import inspect
import logging
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple

import httpx
from PIL import Image, UnidentifiedImageError

from article_extractor.config import ImageConfig
from article_extractor.constants import HASH_CHUNK_SIZE, HTTP_USER_AGENT, MAX_IMAGE_BYTES
from article_extractor.errors import PipelineError, file_system_error, image_download_failed
from article_extractor.models import ImageAcquisitionReport, LocalImage, RemoteImage

logger = logging.getLogger(__name__)


FailureCallback = Callable[[PipelineError], Any]


def iter_batches(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Yield consecutive slices of at most `size` items."""
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def generate_filename(url: str, index: int) -> str:
    """Stable filename: position in the page plus a short digest of the URL."""
    url_digest = hashlib.md5(url.encode("utf-8")).hexdigest()[:8]
    return f"image-{index}-{url_digest}.jpg"


def hash_file(path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """SHA-256 of a file, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def optimize_image(input_path: Path, output_path: Path, max_width: int, quality: int) -> Tuple[int, int]:
    """
    Re-encode an image as JPEG, shrinking it to max_width if wider.

    Returns:
        Final (width, height)
    """
    with Image.open(input_path) as raw_image:
        image = raw_image.convert("RGB")

    if image.width > max_width:
        new_height = max(1, round(image.height * max_width / image.width))
        image = image.resize((max_width, new_height), Image.Resampling.LANCZOS)

    image.save(output_path, "JPEG", quality=quality, optimize=True)
    return image.size


class ImageDownloader:
    """
    Downloads, hashes, deduplicates and optimizes article images.

    Args:
        config: Image settings (max width, quality, concurrency, timeout)
        client: Optional shared httpx.AsyncClient
        transport: Optional httpx transport for the internally created client
    """

    def __init__(
        self,
        config: Optional[ImageConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or ImageConfig()
        self._client = client
        self._transport = transport

    async def acquire(
        self,
        images: Sequence[RemoteImage],
        output_dir: str | Path,
        max_concurrent: Optional[int] = None,
        on_failure: Optional[FailureCallback] = None,
    ) -> List[LocalImage]:
        """Download images; returns the kept images in input order."""
        report = await self.acquire_report(images, output_dir, max_concurrent, on_failure)
        return report.images

    async def acquire_report(
        self,
        images: Sequence[RemoteImage],
        output_dir: str | Path,
        max_concurrent: Optional[int] = None,
        on_failure: Optional[FailureCallback] = None,
    ) -> ImageAcquisitionReport:
        """
        Download images and report what was kept, failed and deduplicated.

        Args:
            images: Images in discovery order
            output_dir: Article directory; files land in its images/ subdirectory
            max_concurrent: Batch size (defaults to config.max_concurrent)
            on_failure: Called (and awaited if it returns an awaitable) for every failed image

        Returns:
            ImageAcquisitionReport
        """
        report = ImageAcquisitionReport()
        if not images:
            return report

        batch_size = max_concurrent or self.config.max_concurrent
        images_dir = Path(output_dir) / "images"

        try:
            images_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            error = file_system_error("create image directory", str(images_dir), e)
            logger.error(error.message)
            for _ in images:
                report.failures.append(error)
                await self._notify(on_failure, error)
            return report

        seen_hashes = set()

        async with self._client_context() as client:
            offset = 0
            for batch in iter_batches(list(images), batch_size):
                results = await asyncio.gather(
                    *(
                        self._process_image(client, image, offset + i, images_dir)
                        for i, image in enumerate(batch)
                    ),
                    return_exceptions=True,
                )
                offset += len(batch)

                for image, result in zip(batch, results):
                    if isinstance(result, BaseException):
                        error = self._to_pipeline_error(image, result)
                        logger.warning(f"Image skipped: {error.message}")
                        report.failures.append(error)
                        await self._notify(on_failure, error)
                        continue

                    if result.hash in seen_hashes:
                        logger.debug(f"Duplicate image dropped: {image.src}")
                        report.duplicates += 1
                        Path(result.local_path).unlink(missing_ok=True)
                        continue

                    seen_hashes.add(result.hash)
                    report.images.append(result)

        logger.info(
            f"Images: {len(report.images)} kept, {len(report.failures)} failed, "
            f"{report.duplicates} duplicates"
        )
        return report

    def _client_context(self):
        if self._client is not None:
            return contextlib.nullcontext(self._client)
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self.config.timeout / 1000,
            headers={"User-Agent": HTTP_USER_AGENT},
            follow_redirects=True,
        )

    async def _process_image(
        self,
        client: httpx.AsyncClient,
        image: RemoteImage,
        index: int,
        images_dir: Path,
    ) -> LocalImage:
        filename = generate_filename(image.src, index)
        local_path = images_dir / filename
        temp_path = images_dir / f"temp-{filename}"

        content = await self._download(client, image.src)

        try:
            temp_path.write_bytes(content)
        except OSError as e:
            raise file_system_error("write image", str(temp_path), e) from e

        try:
            file_hash = await asyncio.to_thread(hash_file, temp_path)
            try:
                width, height = await asyncio.to_thread(
                    optimize_image, temp_path, local_path, self.config.max_width, self.config.quality
                )
            except (UnidentifiedImageError, Image.DecompressionBombError) as e:
                raise image_download_failed(image.src, reason="Not a decodable image", original_error=e) from e
            except OSError as e:
                raise file_system_error("optimize image", str(local_path), e) from e
        finally:
            temp_path.unlink(missing_ok=True)

        return LocalImage(
            src=image.src,
            alt=image.alt,
            title=image.title,
            srcset=image.srcset,
            is_feature_image=image.is_feature_image,
            local_path=str(local_path),
            relative_path=f"images/{filename}",
            hash=file_hash,
            optimized=True,
            width=width,
            height=height,
        )

    async def _download(self, client: httpx.AsyncClient, url: str) -> bytes:
        try:
            response = await client.get(url, timeout=self.config.timeout / 1000)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise image_download_failed(url, reason=f"Timed out after {self.config.timeout}ms", original_error=e) from e
        except httpx.HTTPStatusError as e:
            raise image_download_failed(url, reason=f"HTTP {e.response.status_code}", original_error=e) from e
        except httpx.HTTPError as e:
            raise image_download_failed(url, original_error=e) from e

        content = response.content
        if not content:
            raise image_download_failed(url, reason="Empty response body")
        if len(content) > MAX_IMAGE_BYTES:
            raise image_download_failed(url, reason=f"Image exceeds {MAX_IMAGE_BYTES} bytes")
        return content

    @staticmethod
    def _to_pipeline_error(image: RemoteImage, error: BaseException) -> PipelineError:
        if isinstance(error, PipelineError):
            return error
        return image_download_failed(image.src, original_error=error)

    @staticmethod
    async def _notify(callback: Optional[FailureCallback], error: PipelineError) -> None:
        if callback is None:
            return
        result = callback(error)
        if inspect.isawaitable(result):
            await result

