import logging
import random
from dataclasses import dataclass
from typing import Optional, Union

from .errors import AnalysisUnavailable, NonRetryableRequestError, RenderFailure
from .models import CrawlRequest

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class Retry:
    with_new_session: bool
    delay: float = 0.0


@dataclass(frozen=True)
class Terminal:
    success: bool
    error: Optional[BaseException] = None


Decision = Union[Retry, Terminal]


class RetrySessionPolicy:
    """Decides what happens after each attempt and owns the request's session binding.

    Every attempt result increments ``attempt_count``; a failed request becomes
    terminal once it reaches ``max_attempts``. Retries go to the back of the
    frontier after an exponential backoff delay.
    """

    def __init__(self, session_pool=None, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS, base_delay: float = 1.0,
                 max_delay: float = 30.0, jitter: float = 0.5):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.session_pool = session_pool
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter

    def bind_session(self, request: CrawlRequest) -> None:
        if request.session_id is None and self.session_pool is not None:
            request.session_id = self.session_pool.new_session()

    def backoff_delay(self, attempt_count: int) -> float:
        delay = min(self.max_delay, self.base_delay * (2 ** max(0, attempt_count - 1)))
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay

    def on_attempt_result(self, request: CrawlRequest, error: Optional[BaseException] = None) -> Decision:
        request.attempt_count += 1
        if error is None:
            return Terminal(success=True)

        if isinstance(error, NonRetryableRequestError):
            logger.warning(f"Not retrying {request.url}: {error}")
            return Terminal(success=False, error=error)

        if request.attempt_count >= self.max_attempts:
            logger.error(f"Giving up on {request.url} after {request.attempt_count} attempts: {error}")
            return Terminal(success=False, error=error)

        with_new_session = False
        if isinstance(error, RenderFailure):
            if error.kind in (RenderFailure.CRASH, RenderFailure.BLOCKED):
                with_new_session = True
            elif error.kind == RenderFailure.TIMEOUT:
                request.timeout_count += 1
                # Same identity once, then rotate
                with_new_session = request.timeout_count >= 2
        elif not isinstance(error, AnalysisUnavailable):
            logger.debug(f"Unclassified failure for {request.url} treated as transient: {type(error).__name__}")

        if with_new_session:
            if self.session_pool is not None:
                self.session_pool.retire(request.session_id)
            request.session_id = None

        decision = Retry(with_new_session=with_new_session, delay=self.backoff_delay(request.attempt_count))
        logger.warning(
            f"Retrying {request.url} (attempt {request.attempt_count}/{self.max_attempts}, "
            f"new session: {with_new_session}, delay {decision.delay:.1f}s): {error}"
        )
        return decision
