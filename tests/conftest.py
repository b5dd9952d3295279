"""Shared fixtures: settings, an in-process HTTP transport and a fake browser."""

import asyncio
from typing import Callable, Dict, Optional

import httpx
import pytest

from templar.config import AdvancedSettings, Template
from templar.services import BrowserService, ScanServices


class SleepRecorder:
    """Stands in for ``asyncio.sleep`` and records every requested delay."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeResponse:
    def __init__(self, status: int):
        self.status = status


class FakePage:
    def __init__(self, browser: "FakeBrowser"):
        self.browser = browser
        self.url: Optional[str] = None

    async def goto(self, url: str, wait_until: Optional[str] = None) -> FakeResponse:
        self.browser.navigations.append(url)
        if self.browser.delay:
            await asyncio.sleep(self.browser.delay)
        self.url = url
        return FakeResponse(self.browser.status)

    async def wait_for_selector(self, selector: str, state: Optional[str] = None) -> None:
        return None

    async def content(self) -> str:
        return self.browser.pages.get(self.url, self.browser.default_html)


class FakeContext:
    def __init__(self, browser: "FakeBrowser"):
        self.browser = browser

    async def new_page(self) -> FakePage:
        return FakePage(self.browser)

    async def close(self) -> None:
        self.browser.open_contexts -= 1
        self.browser.closed_contexts += 1


class FakeBrowser:
    def __init__(self, html: str = "", pages: Optional[Dict[str, str]] = None,
                 delay: float = 0.0, status: int = 200):
        self.default_html = html
        self.pages = pages or {}
        self.delay = delay
        self.status = status
        self.navigations = []
        self.open_contexts = 0
        self.peak_contexts = 0
        self.closed_contexts = 0
        self.closed = False

    async def new_context(self, **kwargs) -> FakeContext:
        self.open_contexts += 1
        self.peak_contexts = max(self.peak_contexts, self.open_contexts)
        return FakeContext(self)

    async def close(self) -> None:
        self.closed = True


class FakePlaywright:
    def __init__(self):
        self.stopped = False

    async def stop(self) -> None:
        self.stopped = True


class FakeLauncher:
    """Browser launcher that hands out a new :class:`FakeBrowser` per launch."""

    def __init__(self, error: Optional[BaseException] = None, **browser_kwargs):
        self.error = error
        self.browser_kwargs = browser_kwargs
        self.launches = 0
        self.browsers = []
        self.playwrights = []

    @property
    def browser(self) -> FakeBrowser:
        return self.browsers[-1]

    async def __call__(self):
        self.launches += 1
        if self.error is not None:
            raise self.error
        playwright = FakePlaywright()
        browser = FakeBrowser(**self.browser_kwargs)
        self.playwrights.append(playwright)
        self.browsers.append(browser)
        return playwright, browser


@pytest.fixture
def settings() -> AdvancedSettings:
    """Unlimited rate, one-second retry delay, no results log."""
    return AdvancedSettings(rate_limiter_frequency=0, retry_delay=1.0, results_file=None)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def launcher_factory() -> Callable[..., FakeLauncher]:
    return FakeLauncher


@pytest.fixture
def make_services(settings, sleep_recorder):
    """Build ScanServices around a MockTransport handler and a fake browser."""

    def factory(handler, launcher: Optional[FakeLauncher] = None,
                scan_settings: Optional[AdvancedSettings] = None) -> ScanServices:
        scan_settings = scan_settings or settings
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        browser = BrowserService(
            tabs=scan_settings.headless_tabs,
            timeout=scan_settings.headless_timeout,
            max_html_size=scan_settings.max_html_size,
            launcher=launcher or FakeLauncher(),
        )
        return ScanServices(scan_settings, client=client, browser=browser, sleep=sleep_recorder)

    return factory


@pytest.fixture
def make_template():
    def factory(template_id: str = "test-template", **fields) -> Template:
        return Template.model_validate({"id": template_id, **fields})

    return factory


@pytest.fixture
def status_template(make_template):
    """One HTTP request to /admin that matches on status 200."""
    return make_template(
        "admin-panel",
        info={"name": "Admin panel", "severity": "info"},
        http=[{
            "path": ["{{BaseURL}}/admin"],
            "matchers": [{"type": "status", "status": [200]}],
        }],
    )
