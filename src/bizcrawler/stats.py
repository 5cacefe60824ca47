import logging
import threading
from dataclasses import replace
from typing import Optional

from .errors import RunFinalizedError
from .models import RunStats, RunStatus, utc_now

logger = logging.getLogger(__name__)


class RunAggregator:
    """Run-wide counters shared by all workers. Safe to call from tasks or threads."""

    def __init__(self):
        self._lock = threading.Lock()
        self._stats = RunStats(started_at=utc_now())
        self._final: Optional[RunStats] = None

    @property
    def finalized(self) -> bool:
        return self._final is not None

    def _bump(self, **increments: int) -> None:
        with self._lock:
            if self._final is not None:
                raise RunFinalizedError("Run statistics were already finalized")
            self._stats = replace(
                self._stats,
                **{name: getattr(self._stats, name) + value for name, value in increments.items()},
            )

    def record_success(self) -> None:
        self._bump(pages_processed=1)

    def record_failure(self) -> None:
        self._bump(pages_failed=1)

    def record_retry(self) -> None:
        self._bump(retries_issued=1)

    def snapshot(self) -> RunStats:
        with self._lock:
            return self._final or self._stats

    def finalize(self, status: RunStatus, error: Optional[str] = None) -> RunStats:
        if status is RunStatus.RUNNING:
            raise ValueError("A run cannot be finalized as RUNNING")
        with self._lock:
            if self._final is not None:
                raise RunFinalizedError("Run statistics were already finalized")
            self._final = replace(self._stats, status=status, ended_at=utc_now(), error=error)
        logger.info(
            f"Run finalized: status={status.value} processed={self._final.pages_processed} "
            f"failed={self._final.pages_failed} retries={self._final.retries_issued}"
        )
        return self._final
