from typing import Optional


class CrawlerError(Exception):
    """Base class for errors raised by the crawl-and-analyze pipeline."""


class ConfigurationError(CrawlerError):
    """Invalid job input or missing credentials. Fatal before any crawling starts."""


class RenderFailure(CrawlerError):
    """The page could not be rendered. Retryable."""

    TIMEOUT = "timeout"
    CRASH = "crash"
    BLOCKED = "blocked"
    HTTP = "http"
    NAVIGATION = "navigation"

    def __init__(self, message: str, *, kind: str, url: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.url = url
        self.status_code = status_code


class AnalysisUnavailable(CrawlerError):
    """The model call itself failed (transport, auth, rate limit). Retryable."""

    def __init__(self, error_message: str, truncated_source_text: str):
        super().__init__(error_message)
        self.error_message = error_message
        self.truncated_source_text = truncated_source_text


class NonRetryableRequestError(CrawlerError):
    """Malformed or denylisted URL. Terminal on first sight."""

    def __init__(self, message: str, url: str):
        super().__init__(message)
        self.url = url


class RunTimeout(CrawlerError):
    """The run exceeded its wall-clock budget."""


class RunFinalizedError(RuntimeError):
    """A RunAggregator was used after it was finalized."""
