import itertools
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Sequence
from urllib.parse import urlsplit

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .config import USER_AGENT
from .errors import NonRetryableRequestError, RenderFailure
from .models import CrawlRequest

logger = logging.getLogger(__name__)

BLOCKED_STATUS_CODES = (401, 403, 429)
NETWORK_IDLE_TIMEOUT_MS = 10000

_CRASH_MARKERS = (
    "target crashed",
    "page crashed",
    "target page, context or browser has been closed",
    "target closed",
    "browser has been closed",
    "connection closed while reading from the driver",
)
_INVALID_URL_MARKERS = (
    "invalid url",
    "err_invalid_url",
    "err_unknown_url_scheme",
)


async def block_requests(route, request):
    """Block specified resource types."""
    if request.resource_type in ["image", "stylesheet", "font", "media"]:
        try:
            await route.abort()
        except PlaywrightError:
            # Can happen if request finishes before abort
            pass
    else:
        try:
            await route.continue_()
        except PlaywrightError:
            pass


def classify_browser_error(exc: BaseException, url: str) -> Exception:
    """Map a Playwright error to RenderFailure or NonRetryableRequestError."""
    message = f"{type(exc).__name__}: {exc}"
    low = message.lower()
    if isinstance(exc, PlaywrightTimeoutError):
        return RenderFailure(f"Navigation timeout for {url}: {exc}", kind=RenderFailure.TIMEOUT, url=url)
    if any(marker in low for marker in _CRASH_MARKERS):
        return RenderFailure(f"Render target crashed for {url}: {exc}", kind=RenderFailure.CRASH, url=url)
    if any(marker in low for marker in _INVALID_URL_MARKERS):
        return NonRetryableRequestError(f"Invalid URL {url}: {exc}", url)
    return RenderFailure(f"Navigation error for {url}: {exc}", kind=RenderFailure.NAVIGATION, url=url)


def classify_status(status: int, url: str) -> Optional[Exception]:
    """Error for a non-OK main document status, or None when the page is usable."""
    if status < 400:
        return None
    if status in BLOCKED_STATUS_CODES:
        return RenderFailure(f"Blocked loading {url}: Status {status}", kind=RenderFailure.BLOCKED, url=url, status_code=status)
    if status < 500:
        return NonRetryableRequestError(f"Failed to load {url}: Status {status}", url)
    return RenderFailure(f"Failed to load {url}: Status {status}", kind=RenderFailure.HTTP, url=url, status_code=status)


class SessionPool:
    """Hands out egress identities. Each session is pinned to one proxy from the rotation."""

    def __init__(self, proxy_urls: Sequence[str] = ()):
        self.proxy_urls = tuple(proxy_urls)
        self._proxy_cycle = itertools.cycle(self.proxy_urls) if self.proxy_urls else None
        self._sessions: Dict[str, Optional[str]] = {}

    def new_session(self) -> str:
        session_id = f"session_{uuid.uuid4().hex[:10]}"
        self._sessions[session_id] = next(self._proxy_cycle) if self._proxy_cycle else None
        logger.debug(f"Created {session_id} (proxy: {self._sessions[session_id] or 'direct'})")
        return session_id

    def retire(self, session_id: Optional[str]) -> None:
        if session_id and self._sessions.pop(session_id, None) is not None:
            logger.debug(f"Retired {session_id}")

    def proxy_for(self, session_id: Optional[str]) -> Optional[Dict[str, str]]:
        """Playwright proxy settings for a session, None for direct egress."""
        proxy_url = self._sessions.get(session_id) if session_id else None
        if not proxy_url:
            return None
        parts = urlsplit(proxy_url)
        server = f"{parts.scheme}://{parts.hostname}" + (f":{parts.port}" if parts.port else "")
        proxy = {"server": server}
        if parts.username:
            proxy["username"] = parts.username
            proxy["password"] = parts.password or ""
        return proxy

    def describe(self) -> str:
        return f"{len(self.proxy_urls)} proxies" if self.proxy_urls else "direct"


class BrowserRenderer:
    """Renders pages in headless Chromium, one fresh browser context per attempt."""

    def __init__(self, session_pool: SessionPool, *, headless: bool = True, navigation_timeout_ms: int = 60000,
                 block_resources: bool = True, user_agent: str = USER_AGENT):
        self.session_pool = session_pool
        self.headless = headless
        self.navigation_timeout_ms = navigation_timeout_ms
        self.block_resources = block_resources
        self.user_agent = user_agent
        self.playwright = None
        self.browser = None

    async def setup(self):
        if self.playwright and self.browser:
            return
        try:
            self.playwright = await async_playwright().start()
            self.browser = await self.playwright.chromium.launch(
                headless=self.headless,
                args=[
                    '--disable-gpu',
                    '--no-sandbox',
                    '--disable-setuid-sandbox',
                    '--disable-dev-shm-usage',
                ],
            )
            logger.info("Playwright setup complete.")
        except Exception as e:
            logger.error(f"Error during Playwright setup: {str(e)}")
            raise

    async def cleanup(self):
        try:
            if self.browser:
                await self.browser.close()
                self.browser = None
            if self.playwright:
                await self.playwright.stop()
                self.playwright = None
            logger.info("Playwright cleanup complete.")
        except Exception as e:
            logger.error(f"Error during cleanup: {str(e)}")

    async def __aenter__(self):
        await self.setup()
        return self

    async def __aexit__(self, *exc_info):
        await self.cleanup()

    @asynccontextmanager
    async def open(self, request: CrawlRequest) -> AsyncIterator[Page]:
        """Navigate to the request URL and yield the loaded page."""
        if not self.browser:
            await self.setup()
        url = request.url
        context = None
        page = None
        try:
            try:
                context = await self.browser.new_context(
                    user_agent=self.user_agent,
                    viewport={"width": 1920, "height": 1080},
                    proxy=self.session_pool.proxy_for(request.session_id),
                )
                page = await context.new_page()
                if self.block_resources:
                    await page.route("**/*", block_requests)

                logger.debug(f"Navigating to {url} ({request.session_id})")
                response = await page.goto(url, wait_until="load", timeout=self.navigation_timeout_ms)
                if response is not None:
                    status_error = classify_status(response.status, url)
                    if status_error:
                        raise status_error

                try:
                    await page.wait_for_load_state("networkidle", timeout=NETWORK_IDLE_TIMEOUT_MS)
                except PlaywrightTimeoutError:
                    logger.debug(f"Network did not go idle for {url}, continuing with loaded page")
            except PlaywrightError as e:
                raise classify_browser_error(e, url) from e

            try:
                yield page
            except PlaywrightError as e:
                raise classify_browser_error(e, url) from e
        finally:
            if page:
                try:
                    await page.close()
                except PlaywrightError:
                    pass
            if context:
                try:
                    await context.close()
                except PlaywrightError:
                    pass
