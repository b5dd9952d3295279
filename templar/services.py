"""Long-lived shared resources: HTTP client, per-host limiters, headless browser.

One :class:`ScanServices` is built per process (or per independent scan) and
handed to every executor. It owns the create-if-absent limiter table and the
browser lifecycle so nothing lives in module-level globals.
"""

import asyncio
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from templar.config import AdvancedSettings
from templar.errors import BrowserStartError, HeadlessError
from templar.responses import HeadlessResponse
from templar.utils import logger


class RateLimiter:
    """
    Token bucket rate limiter for one host.

    Holds up to ``burst`` tokens and regains one every ``interval`` seconds.
    An interval of zero disables limiting.
    """

    def __init__(
        self,
        burst: int,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._burst = max(1, burst)
        self._interval = max(0.0, interval)
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(self._burst)
        self._last_update = clock()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a token is available. Cancelling the caller aborts the wait."""
        if self._interval == 0:
            return
        async with self._lock:
            now = self._clock()
            elapsed = now - self._last_update
            self._tokens = min(self._burst, self._tokens + elapsed / self._interval)
            self._last_update = now

            if self._tokens < 1:
                wait_time = (1 - self._tokens) * self._interval
                await self._sleep(wait_time)
                self._tokens = 0.0
                self._last_update = self._clock()
            else:
                self._tokens -= 1


class HostLimiters:
    """Process-wide table of per-hostname limiters."""

    def __init__(self, burst: int, interval: float, **limiter_kwargs: Any):
        self._burst = burst
        self._interval = interval
        self._limiter_kwargs = limiter_kwargs
        self._limiters: Dict[str, RateLimiter] = {}
        self._lock = threading.Lock()

    def get(self, host: str) -> RateLimiter:
        with self._lock:
            limiter = self._limiters.get(host)
            if limiter is None:
                limiter = RateLimiter(self._burst, self._interval, **self._limiter_kwargs)
                self._limiters[host] = limiter
            return limiter

    def __len__(self) -> int:
        return len(self._limiters)


BrowserLauncher = Callable[[], Awaitable[Tuple[Any, Any]]]


async def launch_chromium() -> Tuple[Any, Any]:
    """Start Playwright and a headless Chromium; returns (playwright, browser)."""
    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.launch(headless=True)
    except BaseException:
        await playwright.stop()
        raise
    return playwright, browser


class BrowserService:
    """Lazily started shared browser with a bounded number of open tabs.

    The browser is launched on first use under a lock, so concurrent first
    callers share one instance. Every tab gets its own isolated context.
    """

    def __init__(
        self,
        tabs: int = 10,
        timeout: float = 60.0,
        max_html_size: int = 5 * 1024 * 1024,
        launcher: Optional[BrowserLauncher] = None,
    ):
        self.timeout = timeout
        self.max_html_size = max_html_size
        self.tab_limit = max(1, tabs)
        self._launcher = launcher or launch_chromium
        self._tabs = asyncio.Semaphore(self.tab_limit)
        self._lock = asyncio.Lock()
        self._playwright: Any = None
        self._browser: Any = None
        self.open_tabs = 0
        self.peak_tabs = 0

    async def get_browser(self) -> Any:
        async with self._lock:
            if self._browser is None:
                logger.debug("Starting headless browser")
                try:
                    self._playwright, self._browser = await self._launcher()
                except PlaywrightError as e:
                    raise BrowserStartError(f"failed to start headless browser: {e}") from e
            return self._browser

    async def fetch_html(self, url: str, timeout: Optional[float] = None) -> HeadlessResponse:
        """Render ``url`` in a fresh tab and return the page HTML.

        Raises:
            HeadlessError: the browser cannot start, navigation fails or the
                per-call timeout expires
        """
        browser = await self.get_browser()
        async with self._tabs:
            self.open_tabs += 1
            self.peak_tabs = max(self.peak_tabs, self.open_tabs)
            try:
                return await asyncio.wait_for(
                    self._render(browser, url), timeout or self.timeout
                )
            except asyncio.TimeoutError as e:
                raise HeadlessError(f"timed out rendering {url}") from e
            except PlaywrightError as e:
                raise HeadlessError(f"failed to render {url}: {e}") from e
            finally:
                self.open_tabs -= 1

    async def _render(self, browser: Any, url: str) -> HeadlessResponse:
        start = time.monotonic()
        context = await browser.new_context(ignore_https_errors=True)
        try:
            page = await context.new_page()
            response = await page.goto(url, wait_until="domcontentloaded")
            await page.wait_for_selector("body", state="attached")
            html = await page.content()
        finally:
            await context.close()

        return HeadlessResponse(
            html=html[: self.max_html_size],
            url=url,
            status_code=response.status if response is not None else 0,
            render_time=time.monotonic() - start,
        )

    async def shutdown(self) -> None:
        async with self._lock:
            browser, playwright = self._browser, self._playwright
            self._browser = self._playwright = None
            if browser is not None:
                try:
                    await browser.close()
                except PlaywrightError as e:
                    logger.debug(f"Error closing browser: {e}")
            if playwright is not None:
                await playwright.stop()

    async def restart(self) -> None:
        """Drop the current browser; the next tab starts a fresh one."""
        await self.shutdown()


class ScanServices:
    """Shared HTTP client, host limiters and browser for a scan."""

    def __init__(
        self,
        settings: AdvancedSettings,
        client: Optional[httpx.AsyncClient] = None,
        browser: Optional[BrowserService] = None,
        limiters: Optional[HostLimiters] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.sleep = sleep
        self._client = client
        self._owns_client = client is None
        self.limiters = limiters or HostLimiters(
            settings.rate_limiter_burst_size, settings.rate_limiter_interval
        )
        self.browser = browser or BrowserService(
            tabs=settings.headless_tabs,
            timeout=settings.headless_timeout,
            max_html_size=settings.max_html_size,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                verify=False,
                follow_redirects=True,
                timeout=httpx.Timeout(
                    self.settings.read_timeout, connect=self.settings.connection_timeout
                ),
                limits=httpx.Limits(max_connections=self.settings.workers),
            )
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        await self.browser.shutdown()

    async def __aenter__(self) -> "ScanServices":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
