import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CrawlRequest:
    """One URL to crawl. attempt_count, timeout_count and session_id belong to RetrySessionPolicy."""
    url: str
    origin_domain: str
    unique_key: str
    attempt_count: int = 0
    session_id: Optional[str] = None
    timeout_count: int = 0
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


@dataclass(frozen=True)
class ExtractedText:
    source_url: str
    text: str
    extracted_at: datetime = field(default_factory=utc_now)


# --- Business analysis variants --- #
# Exactly one of these is produced per page; nothing downstream re-parses them.

@dataclass(frozen=True)
class ParsedAnalysis:
    title: Optional[str] = None
    business_type: Optional[str] = None
    observations: Optional[List[str]] = None
    contact_info: Optional[Dict[str, Any]] = None
    social_media: Optional[Dict[str, Any]] = None

    kind = "parsed"

    def to_dict(self) -> Dict[str, Any]:
        record = {
            "title": self.title,
            "businessType": self.business_type,
            "observations": self.observations,
            "contactInfo": self.contact_info,
            "socialMedia": self.social_media,
        }
        # Absent fields stay absent rather than defaulting to empty values
        return {key: value for key, value in record.items() if value is not None}


@dataclass(frozen=True)
class UnparsedAnalysis:
    raw_model_output: str

    kind = "unparsed"

    def to_dict(self) -> Dict[str, Any]:
        return {"rawModelOutput": self.raw_model_output}


@dataclass(frozen=True)
class UnavailableAnalysis:
    error_message: str
    truncated_source_text: str

    kind = "unavailable"

    def to_dict(self) -> Dict[str, Any]:
        return {"errorMessage": self.error_message, "truncatedSourceText": self.truncated_source_text}


BusinessAnalysis = Union[ParsedAnalysis, UnparsedAnalysis, UnavailableAnalysis]


@dataclass(frozen=True)
class PageResult:
    url: str
    analysis: BusinessAnalysis
    timestamp: datetime = field(default_factory=utc_now)
    screenshot_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        record = {
            "url": self.url,
            "analysis": self.analysis.to_dict(),
            "timestamp": self.timestamp.isoformat(),
        }
        if self.screenshot_ref:
            record["screenshotRef"] = self.screenshot_ref
        return record


class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class RunStats:
    pages_processed: int = 0
    pages_failed: int = 0
    retries_issued: int = 0
    started_at: datetime = field(default_factory=utc_now)
    ended_at: Optional[datetime] = None
    status: RunStatus = RunStatus.RUNNING
    error: Optional[str] = None

    @property
    def crawling_time(self) -> Optional[float]:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def to_summary(self) -> Dict[str, Any]:
        """Record stored under CRAWLER_RESULT."""
        summary = {
            "status": self.status.value,
            "pagesProcessed": self.pages_processed,
            "errors": self.pages_failed,
            "retries": self.retries_issued,
            "endTime": self.ended_at.isoformat() if self.ended_at else None,
            "totalPagesCrawled": self.pages_processed + self.pages_failed,
            "failedRequests": self.pages_failed,
            "crawlingTime": self.crawling_time,
        }
        if self.error:
            summary["error"] = self.error
        return summary
