"""Command-line interface for the article extractor."""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from article_extractor.config import AppConfig, load_config
from article_extractor.constants import DEFAULT_CLEANUP_DAYS, DEFAULT_LIST_LIMIT
from article_extractor.cookies import load_cookies_from_file
from article_extractor.errors import PipelineError
from article_extractor.infrastructure.browser_backend import PlaywrightBackend
from article_extractor.logging_config import setup_logging
from article_extractor.markdown_output import cleanup_articles, find_articles
from article_extractor.models import BatchItemResult, Cookie, PipelineResult
from article_extractor.pipeline import PipelineOptions, build_pipeline
from article_extractor.recovery import format_error_message
from article_extractor.summarizer import SummarizationEngine


def print_result(result: PipelineResult):
    """Print an extraction result in a readable form."""
    content = result.content
    print(f"\n{'=' * 60}")
    print(f"{content.metadata.title if content else result.url}")
    print(f"{'=' * 60}")
    print(f"URL: {result.final_url or result.url}")
    if content:
        if content.metadata.author:
            print(f"Author: {content.metadata.author}")
        print(f"Words: {content.word_count} (~{content.reading_time} min read)")
    print(f"Images: {len(result.images)} saved, {result.dropped_images} dropped")
    if result.output:
        print(f"Original: {result.output.original_path}")
        if result.output.summary_path:
            print(f"Summary file: {result.output.summary_path}")

    if result.summary:
        print(f"\n📝 Summary ({result.summary.model}):\n")
        print(result.summary.summary)
    else:
        print("\n⚠️  No summary generated")

    if result.suppressed_errors:
        print("\nRecovered errors:")
        for error in result.suppressed_errors:
            print(f"  • [{error.code.value}] {error.message}")

    print(f"\n{'=' * 60}\n")


def print_batch_results(results: List[BatchItemResult]):
    succeeded = sum(1 for item in results if item.success)
    print(f"\n{'=' * 60}")
    print(f"Batch: {succeeded}/{len(results)} succeeded")
    print(f"{'=' * 60}")
    for item in results:
        if item.success:
            print(f"  ✅ {item.url}")
        else:
            print(f"  ❌ {item.url} [{item.error.code.value}] {item.error.message}")
    print()


def write_json(data, output_file: str):
    path = Path(output_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f, indent=2, default=str)
    print(f"Results written to {output_file}")


def read_url_file(path: str) -> List[str]:
    """One URL per line; blank lines and # comments are ignored."""
    urls = []
    with open(path, "r") as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#"):
                urls.append(line)
    return urls


def _exit_with_error(error: PipelineError, verbose: bool = False):
    print(format_error_message(error, include_stack=verbose), file=sys.stderr)
    sys.exit(1)


def _load_config(args) -> AppConfig:
    try:
        return load_config(args.config)
    except PipelineError as e:
        _exit_with_error(e)


def _load_cookies(args) -> List[Cookie]:
    if not getattr(args, "cookies", None):
        return []
    try:
        return load_cookies_from_file(args.cookies)
    except PipelineError as e:
        _exit_with_error(e)


def _pipeline_options(args) -> PipelineOptions:
    on_chunk = None
    if args.stream:
        def on_chunk(fragment: str):
            print(fragment, end="", flush=True)

    return PipelineOptions(
        output_dir=args.output_dir,
        selector=args.selector,
        download_images=not args.no_images,
        summarize=not args.no_summary,
        model=args.model,
        length=args.length,
        stream=args.stream or None,
        on_chunk=on_chunk,
        save_markdown=not args.no_markdown,
    )


async def _run_extract(config: AppConfig, url: str, cookies: List[Cookie], options: PipelineOptions) -> PipelineResult:
    async with PlaywrightBackend(config.browser) as backend:
        pipeline = build_pipeline(config, backend)
        try:
            return await pipeline.run(url, cookies, options)
        finally:
            await pipeline.summarizer.close()


async def _run_batch(
    config: AppConfig,
    urls: List[str],
    cookies: List[Cookie],
    options: PipelineOptions,
    parallel: int,
) -> List[BatchItemResult]:
    async with PlaywrightBackend(config.browser) as backend:
        pipeline = build_pipeline(config, backend)
        try:
            return await pipeline.run_batch(urls, cookies, options, parallel=parallel)
        finally:
            await pipeline.summarizer.close()


def extract_command(args):
    """Handle the extract command."""
    config = args.app_config
    cookies = _load_cookies(args)
    options = _pipeline_options(args)

    try:
        result = asyncio.run(_run_extract(config, args.url, cookies, options))
    except PipelineError as e:
        _exit_with_error(e, verbose=args.log_level == "DEBUG")

    print_result(result)
    if args.output:
        write_json(result.to_dict(), args.output)


def batch_command(args):
    """Handle the batch command."""
    config = args.app_config
    cookies = _load_cookies(args)
    options = _pipeline_options(args)

    try:
        urls = read_url_file(args.file)
    except OSError as e:
        print(f"Error: cannot read {args.file}: {e}", file=sys.stderr)
        sys.exit(1)

    if not urls:
        print(f"No URLs found in {args.file}")
        sys.exit(0)

    results = asyncio.run(_run_batch(config, urls, cookies, options, args.parallel))

    print_batch_results(results)
    if args.output:
        write_json(
            [
                {
                    "url": item.url,
                    "result": item.result.to_dict() if item.result else None,
                    "error": item.error.to_dict() if item.error else None,
                }
                for item in results
            ],
            args.output,
        )

    if not all(item.success for item in results):
        sys.exit(1)


async def _status(config: AppConfig) -> dict:
    async with SummarizationEngine(config.llm) as engine:
        running = await engine.is_running()
        models = await engine.get_available_models() if running else []
        return {
            "base_url": engine.base_url,
            "running": running,
            "models": [model.name for model in models],
            "primary_model": config.llm.primary_model,
            "fallback_models": config.llm.fallback_models,
        }


def status_command(args):
    """Handle the status command."""
    config = args.app_config
    try:
        status = asyncio.run(_status(config))
    except PipelineError as e:
        _exit_with_error(e)

    print(f"\nLLM server: {status['base_url']}")
    if not status["running"]:
        print("  ❌ Not running (start it with: ollama serve)")
        sys.exit(1)

    print("  ✅ Running")
    print(f"\nInstalled models ({len(status['models'])}):")
    for name in status["models"]:
        print(f"  • {name}")

    for name in [status["primary_model"], *status["fallback_models"]]:
        available = any(name in installed for installed in status["models"])
        print(f"  {'✅' if available else '❌'} {name}")


def _format_size(size: int) -> str:
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def list_command(args):
    """Handle the list command."""
    directory = args.directory or args.app_config.output.base_dir
    if not Path(directory).is_dir():
        print(f"📁 No articles directory found at {directory}")
        return

    articles = find_articles(directory, sort=args.sort, limit=args.limit)
    if not articles:
        print(f"📁 No articles found in {directory}")
        return

    print(f"\n📚 Articles in {directory} (sorted by {args.sort}):\n")
    print(f"{'Modified':<17} {'Size':>9}  Title")
    print(f"{'-' * 17} {'-' * 9}  {'-' * 40}")
    for article in articles:
        print(f"{article.modified:%Y-%m-%d %H:%M} {_format_size(article.size):>9}  {article.title}")
        print(f"{'':<28}{article.path}")
    print()


def cleanup_command(args):
    """Handle the cleanup command."""
    directory = args.directory or args.app_config.output.base_dir
    report = cleanup_articles(directory, args.days, dry_run=args.dry_run)

    if not report.files:
        print(f"✨ Nothing older than {args.days} days in {directory}")
        return

    verb = "Would delete" if report.dry_run else "Deleted"
    print(f"\n🧹 {verb} {len(report.files)} files ({_format_size(report.bytes_freed)}):")
    for path in report.files:
        print(f"  • {path}")
    print()


def _add_extraction_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("--cookies", "-c", help="Cookies file (Netscape cookies.txt or JSON)")
    parser.add_argument("--model", "-m", help="Primary LLM model for summarization")
    parser.add_argument(
        "--length",
        choices=["short", "medium", "long"],
        help="Summary length (default: from config)",
    )
    parser.add_argument("--no-summary", action="store_true", help="Skip summarization")
    parser.add_argument("--no-images", action="store_true", help="Skip image download")
    parser.add_argument("--selector", "-s", help="CSS selector of the article container")
    parser.add_argument("--no-markdown", action="store_true", help="Do not write markdown files")
    parser.add_argument("--output-dir", help="Directory for markdown and images (default: from config)")
    parser.add_argument("--output", "-o", help="Write the JSON result document to this file")
    parser.add_argument("--stream", action="store_true", help="Print the summary as it is generated")


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Article Extractor - Extract articles from authenticated pages and summarize them with a local LLM"
    )

    # Global flags (before subcommands)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Set logging verbosity (default: from config, INFO)",
    )
    parser.add_argument(
        "--log-file",
        help="Write logs to file in addition to console",
    )
    parser.add_argument(
        "--config",
        help="JSON configuration file",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    extract_parser = subparsers.add_parser("extract", help="Extract a single article.")
    extract_parser.add_argument("url", help="Article URL")
    _add_extraction_arguments(extract_parser)
    extract_parser.set_defaults(func=extract_command)

    batch_parser = subparsers.add_parser("batch", help="Extract every URL listed in a file.")
    batch_parser.add_argument("file", help="File with one URL per line")
    _add_extraction_arguments(batch_parser)
    batch_parser.add_argument(
        "--parallel",
        "-p",
        type=int,
        default=1,
        help="URLs processed concurrently (default: 1)",
    )
    batch_parser.set_defaults(func=batch_command)

    status_parser = subparsers.add_parser("status", help="Check the LLM server and installed models.")
    status_parser.set_defaults(func=status_command)

    list_parser = subparsers.add_parser("list", help="List extracted articles.")
    list_parser.add_argument("directory", nargs="?", help="Articles directory (default: from config)")
    list_parser.add_argument(
        "--sort",
        choices=["date", "title", "size"],
        default="date",
        help="Sort order (default: date, newest first)",
    )
    list_parser.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_LIST_LIMIT,
        help=f"Maximum number of articles shown (default: {DEFAULT_LIST_LIMIT})",
    )
    list_parser.set_defaults(func=list_command)

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete old extracted articles.")
    cleanup_parser.add_argument("directory", nargs="?", help="Articles directory (default: from config)")
    cleanup_parser.add_argument(
        "--days",
        type=int,
        default=DEFAULT_CLEANUP_DAYS,
        help=f"Delete files older than this many days (default: {DEFAULT_CLEANUP_DAYS})",
    )
    cleanup_parser.add_argument("--dry-run", action="store_true", help="Show what would be deleted")
    cleanup_parser.set_defaults(func=cleanup_command)

    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return

    # Flags win over the config's logging section (file, then env overrides)
    args.app_config = _load_config(args)
    args.log_level = (args.log_level or args.app_config.logging.level).upper()
    setup_logging(
        level=args.log_level,
        log_file=args.log_file or args.app_config.logging.file,
    )

    args.func(args)


if __name__ == "__main__":
    main()
