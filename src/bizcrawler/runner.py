import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from .analysis import AnalysisClient, build_llm
from .browser import BrowserRenderer, SessionPool
from .config import Settings, load_job_input, load_settings
from .controller import CrawlController
from .errors import ConfigurationError
from .links import LinkExpander
from .models import RunStats, RunStatus, utc_now
from .retry import RetrySessionPolicy
from .stats import RunAggregator
from .storage import Dataset, KeyValueStore

logger = logging.getLogger(__name__)

RESULTS_DATASET = "default"
FAILED_DATASET = "failed-requests"


async def run_job(job_input: Any, settings: Optional[Settings] = None, *, llm=None, renderer=None,
                  session_pool: Optional[SessionPool] = None, task_id: Optional[str] = None) -> RunStats:
    """Validate input, crawl, and persist the CRAWLER_RESULT record exactly once."""
    job = load_job_input(job_input)
    settings = settings or load_settings()
    settings.require_credentials()
    if llm is None:
        llm = build_llm(settings)

    key_value_store = KeyValueStore(settings.storage_dir)
    dataset = Dataset(settings.storage_dir, RESULTS_DATASET)
    failed_dataset = Dataset(settings.storage_dir, FAILED_DATASET)
    session_pool = session_pool or SessionPool(settings.proxy_urls)

    own_renderer = renderer is None
    if own_renderer:
        renderer = BrowserRenderer(
            session_pool,
            headless=settings.headless,
            navigation_timeout_ms=settings.navigation_timeout_ms,
            block_resources=settings.block_resources and not job.include_screenshots,
            user_agent=settings.user_agent,
        )

    await key_value_store.set_value("config", {
        "maxPagesToCrawl": job.max_pages_to_crawl,
        "includeScreenshots": job.include_screenshots,
        "proxyConfig": session_pool.describe(),
        "startTime": utc_now().isoformat(),
        "startUrls": job.start_urls,
        "llmMode": settings.llm_mode,
        "llmModel": settings.model_name,
    })

    aggregator = RunAggregator()
    controller = CrawlController(
        renderer,
        AnalysisClient(llm, max_content_length=settings.max_content_length),
        RetrySessionPolicy(
            session_pool,
            max_attempts=settings.max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter=settings.retry_jitter,
        ),
        aggregator,
        dataset,
        key_value_store=key_value_store,
        failed_dataset=failed_dataset,
        link_expander=LinkExpander(settings.deny_extensions),
        concurrency=settings.concurrency,
        run_timeout=settings.run_timeout_secs,
        include_screenshots=job.include_screenshots,
        task_id=task_id,
    )

    stats: Optional[RunStats] = None
    failure: Optional[str] = None
    try:
        if own_renderer:
            await renderer.setup()
        stats = await controller.run(job.start_urls, job.max_pages_to_crawl)
        return stats
    except BaseException as e:
        failure = str(e) or type(e).__name__
        raise
    finally:
        if own_renderer:
            await renderer.cleanup()
        if stats is None:
            stats = aggregator.snapshot() if aggregator.finalized else aggregator.finalize(RunStatus.FAILED, error=failure)
        await key_value_store.set_value("CRAWLER_RESULT", stats.to_summary())
        logger.info(f"Results saved under {settings.storage_dir}")


def _build_job(args: argparse.Namespace) -> Dict[str, Any]:
    job: Dict[str, Any] = {}
    if args.input:
        job = json.loads(Path(args.input).read_text(encoding="utf-8"))
    if args.urls:
        job["startUrls"] = args.urls
    if args.max_pages is not None:
        job["maxPagesToCrawl"] = args.max_pages
    if args.screenshots:
        job["includeScreenshots"] = True
    return job


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Crawl a website and analyze each page's business profile with an LLM")
    parser.add_argument("urls", nargs="*", help="Start URLs to crawl")
    parser.add_argument("-i", "--input", help="JSON job input file ({startUrls, maxPagesToCrawl, includeScreenshots})")
    parser.add_argument("-p", "--max-pages", type=int, default=None, help="Maximum number of pages to crawl (default: 1)")
    parser.add_argument("-c", "--concurrency", type=int, default=None, help="Number of concurrent pages to process")
    parser.add_argument("-t", "--timeout", type=float, default=None, help="Run timeout in seconds")
    parser.add_argument("--screenshots", action="store_true", help="Store a full-page screenshot of every analyzed page")
    parser.add_argument("--storage-dir", default=None, help="Directory for datasets and key-value records")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    settings = load_settings()
    overrides: Dict[str, Any] = {}
    if args.concurrency is not None:
        overrides["concurrency"] = max(1, min(10, args.concurrency))
    if args.timeout is not None:
        overrides["run_timeout_secs"] = args.timeout if args.timeout > 0 else None
    if args.storage_dir:
        overrides["storage_dir"] = Path(args.storage_dir)
    if overrides:
        settings = replace(settings, **overrides)

    try:
        job = _build_job(args)
    except (OSError, ValueError) as e:
        logger.error(f"Could not read job input {args.input}: {e}")
        return 1

    try:
        stats = asyncio.run(run_job(job, settings))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    print("\n--- Crawl Result ---")
    for key, value in stats.to_summary().items():
        print(f"{key}: {value}")
    print(f"Results: {settings.storage_dir}")
    print("--------------------")
    return 0 if stats.status is RunStatus.SUCCEEDED else 1


if __name__ == "__main__":
    sys.exit(main())
