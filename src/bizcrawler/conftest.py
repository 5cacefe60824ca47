import asyncio
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Sequence

import pytest
from langchain_core.messages import AIMessage

from bizcrawler.analysis import AnalysisClient
from bizcrawler.browser import SessionPool
from bizcrawler.controller import CrawlController
from bizcrawler.retry import RetrySessionPolicy
from bizcrawler.stats import RunAggregator
from bizcrawler.storage import Dataset, KeyValueStore


class FakePage:
    """Stands in for a Playwright page: visible texts, raw HTML and a screenshot."""

    def __init__(self, url: str, texts: Sequence[str] = (), html: str = "", screenshot_failures: Sequence[Exception] = ()):
        self.url = url
        self.texts = list(texts)
        self.html = html
        self.screenshots = 0
        self.screenshot_failures = list(screenshot_failures)

    async def evaluate(self, script):
        return list(self.texts)

    async def content(self):
        return self.html

    async def screenshot(self, **kwargs):
        self.screenshots += 1
        if self.screenshot_failures:
            raise self.screenshot_failures.pop(0)
        return b"\xff\xd8fake-jpeg"


class FakeRenderer:
    """Serves FakePages by URL; ``failures`` lists errors raised on successive attempts."""

    def __init__(self, pages: Optional[Dict[str, FakePage]] = None, failures: Optional[Dict[str, List[Exception]]] = None,
                 delay: float = 0.0):
        self.pages = pages or {}
        self.failures = {url: list(errors) for url, errors in (failures or {}).items()}
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0

    @asynccontextmanager
    async def open(self, request):
        self.calls.append((request.url, request.session_id))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            pending = self.failures.get(request.url)
            if pending:
                raise pending.pop(0)
            yield self.pages.get(request.url) or FakePage(request.url)
        finally:
            self.active -= 1


class FakeLLM:
    """Chat model double: returns queued responses in order, raising queued exceptions."""

    def __init__(self, responses=None, default: str = '{"title": "Example", "businessType": "unknown", "observations": []}'):
        self.responses = list(responses or [])
        self.default = default
        self.calls = []

    async def ainvoke(self, messages):
        self.calls.append(messages)
        item = self.responses.pop(0) if self.responses else self.default
        if isinstance(item, Exception):
            raise item
        return AIMessage(content=item)


@pytest.fixture
def make_page():
    return FakePage


@pytest.fixture
def make_renderer():
    return FakeRenderer


@pytest.fixture
def make_llm():
    return FakeLLM


@pytest.fixture
def make_controller(tmp_path):
    def _make(renderer, llm, *, concurrency=1, max_attempts=3, run_timeout=None, include_screenshots=False,
              session_pool=None):
        return CrawlController(
            renderer,
            AnalysisClient(llm),
            RetrySessionPolicy(session_pool or SessionPool(), max_attempts=max_attempts, base_delay=0, jitter=0),
            RunAggregator(),
            Dataset(tmp_path, "default"),
            key_value_store=KeyValueStore(tmp_path),
            failed_dataset=Dataset(tmp_path, "failed-requests"),
            concurrency=concurrency,
            run_timeout=run_timeout,
            include_screenshots=include_screenshots,
        )
    return _make
