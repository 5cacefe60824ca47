import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from .analysis import AnalysisClient
from .errors import AnalysisUnavailable, NonRetryableRequestError, RunTimeout
from .extractor import TextExtractor
from .links import LinkExpander, canonical_url, has_denied_extension, url_origin
from .models import CrawlRequest, ExtractedText, PageResult, RunStats, RunStatus, UnavailableAnalysis, utc_now
from .retry import Decision, Retry, RetrySessionPolicy, Terminal
from .state import crawl_progress
from .stats import RunAggregator

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3


@dataclass
class AttemptOutcome:
    request: CrawlRequest
    decision: Decision
    links: List[str] = field(default_factory=list)
    loaded_url: Optional[str] = None


class CrawlController:
    """Owns the frontier, the seen-set and the worker pool of one run."""

    def __init__(self, renderer, analysis_client: AnalysisClient, policy: RetrySessionPolicy,
                 aggregator: RunAggregator, dataset, *, key_value_store=None, failed_dataset=None,
                 extractor: Optional[TextExtractor] = None, link_expander: Optional[LinkExpander] = None,
                 concurrency: int = DEFAULT_CONCURRENCY, run_timeout: Optional[float] = None,
                 include_screenshots: bool = False, task_id: Optional[str] = None):
        self.renderer = renderer
        self.analysis_client = analysis_client
        self.policy = policy
        self.aggregator = aggregator
        self.dataset = dataset
        self.key_value_store = key_value_store
        self.failed_dataset = failed_dataset
        self.extractor = extractor or TextExtractor()
        self.link_expander = link_expander or LinkExpander()
        self.concurrency = max(1, concurrency)
        self.run_timeout = run_timeout
        self.include_screenshots = include_screenshots
        self.task_id = task_id

        self.frontier: asyncio.Queue = asyncio.Queue()
        self.seen: Set[str] = set()
        self.enqueued = 0
        self.dispatched = 0

    def _update_progress(self, updates: Dict[str, Any]):
        if self.task_id and self.task_id in crawl_progress:
            stats = self.aggregator.snapshot()
            crawl_progress[self.task_id].update({
                **updates,
                "pages_processed": stats.pages_processed,
                "pages_failed": stats.pages_failed,
                "retries": stats.retries_issued,
                "urls_in_queue": self.frontier.qsize(),
                "last_update": datetime.now().isoformat(),
            })

    # --- Frontier --- #

    def _enqueue(self, url: str, origin_domain: Optional[str] = None) -> bool:
        unique_key = canonical_url(url)
        if unique_key in self.seen:
            return False
        self.seen.add(unique_key)
        self.enqueued += 1
        if origin_domain is None:
            origin = url_origin(url)
            origin_domain = origin[1] if origin else ""
        self.frontier.put_nowait(CrawlRequest(url=url.strip(), origin_domain=origin_domain, unique_key=unique_key))
        return True

    def _enqueue_links(self, links: Iterable[str], parent: CrawlRequest, max_pages: int) -> int:
        queued = 0
        for link in links:
            if self.enqueued >= max_pages:
                logger.debug(f"Max pages limit ({max_pages}) reached, not queueing more links from {parent.url}")
                break
            if self._enqueue(link, parent.origin_domain):
                queued += 1
        if queued:
            logger.debug(f"Queued {queued} new links from {parent.url}")
        return queued

    # --- Run --- #

    async def run(self, seed_urls: Sequence[str], max_pages: int) -> RunStats:
        self.frontier = asyncio.Queue()
        self.seen = set()
        self.enqueued = 0
        self.dispatched = 0
        for url in seed_urls:
            self._enqueue(url)
        logger.info(f"Crawl starting: {self.enqueued} seed URLs, max pages {max_pages}, concurrency {self.concurrency}")
        self._update_progress({"status": "crawling", "phase": "crawling"})

        try:
            if self.run_timeout:
                await asyncio.wait_for(self._crawl_loop(max_pages), timeout=self.run_timeout)
            else:
                await self._crawl_loop(max_pages)
        except asyncio.TimeoutError:
            error = RunTimeout(f"Run timed out after {self.run_timeout} seconds")
            logger.error(str(error))
            self._update_progress({"status": "failed", "error": str(error)})
            return self.aggregator.finalize(RunStatus.FAILED, error=str(error))
        except Exception as e:
            logger.exception(f"Unhandled exception during crawl loop: {e}")
            self._update_progress({"status": "failed", "error": str(e)})
            if not self.aggregator.finalized:
                self.aggregator.finalize(RunStatus.FAILED, error=str(e))
            raise

        self._update_progress({"status": "completed", "phase": "finished"})
        return self.aggregator.finalize(RunStatus.SUCCEEDED)

    async def _crawl_loop(self, max_pages: int) -> None:
        workers: Set[asyncio.Task] = set()
        try:
            while True:
                # --- Launch New Workers --- #
                while not self.frontier.empty() and len(workers) < self.concurrency:
                    request: CrawlRequest = self.frontier.get_nowait()
                    if request.attempt_count == 0:
                        if self.dispatched >= max_pages:
                            logger.debug(f"Skipping {request.url} - page budget ({max_pages}) exhausted")
                            continue
                        self.dispatched += 1
                    workers.add(asyncio.create_task(self._process_request(request)))

                if not workers:
                    logger.info("Frontier is empty and all workers finished.")
                    return

                # --- Process Finished Workers --- #
                done, _ = await asyncio.wait(workers, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    workers.discard(task)
                    self._handle_outcome(task.result(), max_pages)
        finally:
            if workers:
                logger.info(f"Cancelling {len(workers)} remaining worker tasks.")
                for task in workers:
                    task.cancel()
                await asyncio.gather(*workers, return_exceptions=True)

    def _handle_outcome(self, outcome: AttemptOutcome, max_pages: int) -> None:
        request = outcome.request
        if outcome.loaded_url:
            self.seen.add(canonical_url(outcome.loaded_url))
        self._enqueue_links(outcome.links, request, max_pages)
        if isinstance(outcome.decision, Retry):
            self.frontier.put_nowait(request)
        self._update_progress({})

    # --- Worker --- #

    async def _process_request(self, request: CrawlRequest) -> AttemptOutcome:
        self.policy.bind_session(request)
        self._update_progress({"current_url": request.url})
        outcome = AttemptOutcome(request=request, decision=Terminal(success=True))
        error: Optional[Exception] = None
        try:
            await self._attempt(request, outcome)
        except Exception as e:
            error = e

        decision = self.policy.on_attempt_result(request, error)
        outcome.decision = decision
        if isinstance(decision, Retry):
            self.aggregator.record_retry()
            if decision.delay > 0:
                await asyncio.sleep(decision.delay)
        elif decision.success:
            self.aggregator.record_success()
        else:
            self.aggregator.record_failure()
            await self._record_failed_request(request, decision.error)
        return outcome

    async def _attempt(self, request: CrawlRequest, outcome: AttemptOutcome) -> None:
        origin = url_origin(request.url)
        if origin is None:
            raise NonRetryableRequestError(f"Malformed URL: {request.url}", request.url)
        if has_denied_extension(request.url, self.link_expander.deny_extensions):
            raise NonRetryableRequestError(f"Denylisted resource type: {request.url}", request.url)

        logger.info(f"Processing [attempt {request.attempt_count + 1}]: {request.url}")
        async with self.renderer.open(request) as page:
            if page.url and page.url != request.url:
                logger.info(f"Redirected from {request.url} to {page.url}")
                outcome.loaded_url = page.url

            extracted = ExtractedText(source_url=request.url, text=await self.extractor.extract(page))
            logger.debug(f"Extracted {len(extracted.text)} chars from {request.url}")

            # Relative links resolve against the document that was actually loaded
            outcome.links = list(await self.link_expander.expand(page.url or request.url, page))

            screenshot_ref = None
            if self.include_screenshots and self.key_value_store is not None:
                screenshot = await page.screenshot(type="jpeg", quality=80, full_page=True)
                screenshot_ref = f"screenshot-{request.id}"
                await self.key_value_store.set_value(screenshot_ref, screenshot, content_type="image/jpeg")

            analysis = await self.analysis_client.analyze(extracted.text)

        result = PageResult(url=request.url, analysis=analysis, screenshot_ref=screenshot_ref)
        await self.dataset.push_data(result.to_dict())
        logger.info(f"Processed Result: URL={request.url} | Analysis={analysis.kind} | Links Found={len(outcome.links)}")

    async def _record_failed_request(self, request: CrawlRequest, error: Optional[BaseException]) -> None:
        if self.failed_dataset is None:
            return
        record: Dict[str, Any] = {
            "url": request.url,
            "errorKind": type(error).__name__ if error else None,
            "errorMessage": str(error) if error else None,
            "attempts": request.attempt_count,
            "timestamp": utc_now().isoformat(),
        }
        if isinstance(error, AnalysisUnavailable):
            record["analysis"] = UnavailableAnalysis(
                error_message=error.error_message,
                truncated_source_text=error.truncated_source_text,
            ).to_dict()
        try:
            await self.failed_dataset.push_data(record)
        except OSError as e:
            logger.error(f"Could not store failed request record for {request.url}: {e}")
