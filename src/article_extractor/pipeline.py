"""
Pipeline coordinator.

Sequences the extraction stages for one URL and routes every failure through
the ErrorRecoveryEngine:

    cookies -> page load -> paywall check -> content -> images -> summary -> markdown

Recoverable failures (image downloads, LLM server down, missing models) are
absorbed and recorded on the result; fatal ones (expired cookies, paywall)
propagate as a single PipelineError.
"""

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence
from urllib.parse import urlparse

from article_extractor.config import AppConfig
from article_extractor.content_extractor import extract_content
from article_extractor.cookies import detect_expired_cookies
from article_extractor.errors import (
    ErrorCode,
    PipelineError,
    cookie_expired,
    image_download_failed,
    llm_server_unreachable,
    model_not_found,
    paywall_detected,
    unknown_error,
)
from article_extractor.image_downloader import ImageDownloader
from article_extractor.image_extractor import ImageExtractor
from article_extractor.markdown_output import ArticleWriter
from article_extractor.models import (
    ArticleOutput,
    BatchItemResult,
    Cookie,
    ExtractedContent,
    LocalImage,
    PaywallVerdict,
    PipelineResult,
    SummarizationResult,
)
from article_extractor.page_loader import PageLoader, PageLoadOptions, PageLoadResult
from article_extractor.recovery import ErrorRecoveryEngine, RecoveryAttemptCounter
from article_extractor.summarizer import SummarizationEngine, SummarizationOptions

logger = logging.getLogger(__name__)


@dataclass
class PipelineOptions:
    """Per-run switches and overrides."""
    output_dir: Optional[str] = None
    selector: Optional[str] = None
    wait_for_selector: Optional[str] = None
    download_images: bool = True
    summarize: bool = True
    model: Optional[str] = None
    length: Optional[str] = None
    stream: Optional[bool] = None
    on_chunk: Optional[Callable[[str], Any]] = None
    max_concurrent_images: Optional[int] = None
    save_markdown: bool = True


def article_dir_name(url: str) -> str:
    """Directory name for one article: host plus a short digest of the URL."""
    host = urlparse(url).hostname or "article"
    digest = hashlib.md5(url.encode("utf-8")).hexdigest()[:8]
    return f"{host}-{digest}"


class PipelineCoordinator:
    """
    Runs the extraction pipeline for single URLs or batches.

    Every run gets its own RecoveryAttemptCounter; the components (and the
    summarizer's model inventory cache) are shared across runs.
    """

    def __init__(
        self,
        loader: PageLoader,
        image_extractor: ImageExtractor,
        downloader: ImageDownloader,
        summarizer: SummarizationEngine,
        recovery: Optional[ErrorRecoveryEngine] = None,
        config: Optional[AppConfig] = None,
        writer: Optional[ArticleWriter] = None,
    ):
        self.loader = loader
        self.image_extractor = image_extractor
        self.downloader = downloader
        self.summarizer = summarizer
        self.recovery = recovery or ErrorRecoveryEngine()
        self.config = config or AppConfig()
        self.writer = writer or ArticleWriter()

    async def run(
        self,
        url: str,
        cookies: Optional[Sequence[Cookie]] = None,
        options: Optional[PipelineOptions] = None,
    ) -> PipelineResult:
        """
        Extract one article.

        Args:
            url: Article URL
            cookies: Authentication cookies
            options: Per-run switches

        Returns:
            PipelineResult (possibly degraded: no images, no summary)

        Raises:
            PipelineError: fatal or unrecoverable failure
        """
        options = options or PipelineOptions()
        cookies = list(cookies or [])
        counter = RecoveryAttemptCounter()
        suppressed: List[PipelineError] = []
        context = {"url": url}
        start_time = time.time()

        expired = detect_expired_cookies(cookies)
        if expired:
            error = cookie_expired(expired_count=len(expired), expired_names=[c.name for c in expired])
            outcome = await self.recovery.handle(error, counter, context)
            raise outcome.error

        load_result = await self._load_page(url, cookies, options, counter)
        article_dir = options.output_dir or str(Path(self.config.output.base_dir) / article_dir_name(url))

        images: List[LocalImage] = []
        dropped = 0
        try:
            if load_result.paywall != PaywallVerdict.NONE:
                error = paywall_detected(url, load_result.paywall.value)
                outcome = await self.recovery.handle(error, counter, context)
                raise outcome.error

            content = await self._extract(load_result, url, options, counter)

            if options.download_images:
                images, dropped = await self._acquire_images(load_result, content, article_dir, options, counter, suppressed)
        finally:
            await load_result.close()

        summary = None
        if options.summarize:
            summary = await self._summarize(content, options, counter, suppressed)

        output = None
        if options.save_markdown:
            output = await self._write_output(article_dir, content, images, summary, counter, suppressed)

        result = PipelineResult(
            url=url,
            final_url=load_result.final_url,
            paywall=load_result.paywall,
            content=content,
            images=images,
            summary=summary,
            suppressed_errors=suppressed,
            dropped_images=dropped,
            output=output,
            duration=time.time() - start_time,
        )

        stats = self.recovery.get_stats(counter)
        logger.info(
            f"Extracted {url}: {content.word_count} words, {len(images)} images, "
            f"summary={'yes' if summary else 'no'}, errors={stats['total_errors']}"
        )
        return result

    async def run_batch(
        self,
        urls: Sequence[str],
        cookies: Optional[Sequence[Cookie]] = None,
        options: Optional[PipelineOptions] = None,
        parallel: int = 1,
    ) -> List[BatchItemResult]:
        """
        Extract several articles, `parallel` at a time.

        A failure aborts only its own URL. Results keep the order of `urls`.
        """
        options = options or PipelineOptions()
        parallel = max(1, parallel)
        results: List[BatchItemResult] = []

        for start in range(0, len(urls), parallel):
            group = urls[start:start + parallel]
            logger.info(f"Batch: processing {start + 1}-{start + len(group)} of {len(urls)}")
            results.extend(await asyncio.gather(*(self._run_item(url, cookies, options) for url in group)))

        succeeded = sum(1 for item in results if item.success)
        logger.info(f"Batch complete: {succeeded}/{len(results)} succeeded")
        return results

    async def _run_item(
        self,
        url: str,
        cookies: Optional[Sequence[Cookie]],
        options: PipelineOptions,
    ) -> BatchItemResult:
        if options.output_dir:
            options = replace(options, output_dir=str(Path(options.output_dir) / article_dir_name(url)))
        try:
            return BatchItemResult(url=url, result=await self.run(url, cookies, options))
        except PipelineError as e:
            return BatchItemResult(url=url, error=e)
        except Exception as e:
            logger.exception(f"Unexpected failure for {url}")
            return BatchItemResult(url=url, error=unknown_error(e, url=url))

    async def _load_page(
        self,
        url: str,
        cookies: List[Cookie],
        options: PipelineOptions,
        counter: RecoveryAttemptCounter,
    ) -> PageLoadResult:
        load_options = PageLoadOptions(wait_for_selector=options.wait_for_selector)
        while True:
            try:
                return await self.loader.load(url, cookies, load_options)
            except Exception as e:
                outcome = await self.recovery.handle(e, counter, {"url": url})
                if outcome.error.code == ErrorCode.NETWORK_TIMEOUT and outcome.recovered:
                    continue
                if outcome.error is e:
                    raise
                raise outcome.error from e

    async def _extract(
        self,
        load_result: PageLoadResult,
        url: str,
        options: PipelineOptions,
        counter: RecoveryAttemptCounter,
    ) -> ExtractedContent:
        try:
            return extract_content(load_result.html, url, options.selector)
        except Exception as e:
            outcome = await self.recovery.handle(e, counter, {"url": url, "details": {"stage": "content extraction"}})
            if outcome.error is e:
                raise
            raise outcome.error from e

    async def _write_output(
        self,
        article_dir: str,
        content: ExtractedContent,
        images: List[LocalImage],
        summary: Optional[SummarizationResult],
        counter: RecoveryAttemptCounter,
        suppressed: List[PipelineError],
    ) -> Optional[ArticleOutput]:
        try:
            return await asyncio.to_thread(self.writer.write, article_dir, content, images, summary)
        except Exception as e:
            outcome = await self.recovery.handle(e, counter, {"url": content.metadata.source_url, "file_path": article_dir})
            suppressed.append(outcome.error)
            return None

    async def _acquire_images(
        self,
        load_result: PageLoadResult,
        content: ExtractedContent,
        article_dir: str,
        options: PipelineOptions,
        counter: RecoveryAttemptCounter,
        suppressed: List[PipelineError],
    ) -> tuple:
        page_url = load_result.final_url or load_result.url
        context = {"url": load_result.url}

        try:
            remote_images = await self.image_extractor.extract_downloadable_images(
                load_result.page, page_url, content.container_selector
            )
        except Exception as e:
            error = image_download_failed(page_url, reason="Image discovery failed", original_error=e)
            outcome = await self.recovery.handle(error, counter, context)
            suppressed.append(outcome.error)
            return [], 0

        if not remote_images:
            return [], 0

        async def on_failure(error: PipelineError) -> None:
            outcome = await self.recovery.handle(error, counter, context)
            suppressed.append(outcome.error)

        report = await self.downloader.acquire_report(
            remote_images,
            article_dir,
            max_concurrent=options.max_concurrent_images,
            on_failure=on_failure,
        )
        return report.images, report.dropped

    async def _summarize(
        self,
        content: ExtractedContent,
        options: PipelineOptions,
        counter: RecoveryAttemptCounter,
        suppressed: List[PipelineError],
    ) -> Optional[SummarizationResult]:
        context = {"url": content.metadata.source_url}

        if not content.text:
            logger.warning("No article text extracted, skipping summarization")
            return None

        async def absorb(error: BaseException):
            outcome = await self.recovery.handle(error, counter, context)
            suppressed.append(outcome.error)
            return outcome

        if not await self.summarizer.is_running():
            await absorb(llm_server_unreachable(self.summarizer.base_url))
            return None

        llm = self.config.llm
        primary = options.model or llm.primary_model
        preferences = [primary, *llm.fallback_models]

        model = await self.summarizer.select_best_model(preferences)
        if model is None:
            await absorb(model_not_found(primary))
            return None

        summary_options = SummarizationOptions(model=model, length=options.length)
        fallbacks = [name for name in llm.fallback_models if name != model]

        fallback_used = False
        while True:
            try:
                return await self._generate(content.text, summary_options, options, fallbacks)
            except Exception as e:
                outcome = await absorb(e)

            if outcome.error.code == ErrorCode.NETWORK_TIMEOUT and outcome.recovered:
                logger.info(f"Retrying summarization with {summary_options.model} after timeout")
                continue

            fallback_model = outcome.fallback_model
            if (
                outcome.error.code == ErrorCode.MODEL_NOT_FOUND
                and outcome.recovered
                and fallback_model
                and not fallback_used
                and fallback_model != summary_options.model
            ):
                logger.info(f"Retrying summarization with {fallback_model}")
                summary_options = replace(summary_options, model=fallback_model)
                fallbacks = []
                fallback_used = True
                continue

            return None

    async def _generate(
        self,
        text: str,
        summary_options: SummarizationOptions,
        options: PipelineOptions,
        fallbacks: List[str],
    ) -> SummarizationResult:
        stream = options.stream if options.stream is not None else self.config.llm.streaming
        if stream:
            return await self.summarizer.collect_stream_with_fallback(
                text, summary_options, fallbacks, on_chunk=options.on_chunk
            )
        return await self.summarizer.summarize_with_fallback(text, summary_options, fallbacks)


def build_pipeline(config: AppConfig, backend: Any) -> PipelineCoordinator:
    """Wire the default components around a browser backend."""
    return PipelineCoordinator(
        loader=PageLoader(backend, config.browser),
        image_extractor=ImageExtractor(backend),
        downloader=ImageDownloader(config.images),
        summarizer=SummarizationEngine(config.llm),
        recovery=ErrorRecoveryEngine(),
        config=config,
    )
