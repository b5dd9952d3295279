"""Template evaluation against a single target."""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlparse

from templar.config import AdvancedSettings, RequestConfig, RequestType, Template
from templar.errors import BrowserStartError, HeadlessError, RequestError, TemplarError
from templar.extractors import run_extractors
from templar.matchers import can_offline_match_request, match_offline_html
from templar.protocols import (
    match_dns_request,
    match_headless_request,
    match_http_request,
    match_network_request,
)
from templar.responses import MatchContext
from templar.scanner.flow import parse_flow
from templar.services import ScanServices
from templar.utils import logger as default_logger
from templar.variables import VariableScope

ProgressCallback = Callable[[int, int], None]

OFFLINE_REQUEST_TYPES = (RequestType.HTTP, RequestType.HEADLESS)


def needs_page_fetch(templates: List[Template]) -> bool:
    """True if any request could be answered from the target's root page."""
    return any(
        request.type in OFFLINE_REQUEST_TYPES and can_offline_match_request(request)
        for template in templates
        for request in template.requests
    )


class TemplateEngine:
    """Runs the requests of one template against one target.

    Holds the per-evaluation variable scope, so a new engine is built for every
    (target, template) pair.
    """

    def __init__(
        self,
        target_url: str,
        template: Template,
        settings: AdvancedSettings,
        services: ScanServices,
        page_html: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.target_url = target_url
        self.template = template
        self.settings = settings
        self.services = services
        self.page_html = page_html
        self.logger = logger or default_logger
        self.scope = VariableScope.for_target(template.variables, target_url)

        parsed = urlparse(target_url)
        self.hostname = parsed.hostname or ""
        self.port = parsed.port or (443 if parsed.scheme == "https" else 80)

    async def match(self) -> bool:
        """Evaluate the template.

        With a ``flow`` the referenced requests run in order and the first
        non-match ends evaluation. Without one, requests are tried in declared
        order and the first match wins.

        Raises:
            FlowError: the flow is malformed or references a missing request
            TemplarError: the template declares no requests
        """
        requests = self.template.requests
        if not requests:
            raise TemplarError(f"template {self.template.id} has no requests")

        if self.template.flow:
            steps = parse_flow(self.template.flow, len(requests))
            for step in steps:
                if not await self.run_request(requests[step.position]):
                    self.logger.debug(f"Template {self.template.id}: flow stopped at {step.protocol}({step.index})")
                    return False
            return True

        for request in requests:
            if await self.run_request(request):
                return True
        return False

    async def run_request(self, request: RequestConfig) -> bool:
        """Run one request; request failures are logged and count as no match."""
        if request.type in OFFLINE_REQUEST_TYPES and self.page_html and can_offline_match_request(request):
            if match_offline_html(self.page_html, request, self.logger, self.template.id):
                run_extractors(
                    request.extractors, MatchContext.from_html(self.page_html), self.scope, self.logger
                )
                return True
            if request.type == RequestType.HEADLESS:
                return False

        try:
            return await self._dispatch(request)
        except BrowserStartError:
            raise
        except (RequestError, HeadlessError) as e:
            self.logger.info(f"Template {self.template.id}: {request.type.value} request failed: {e}")
            return False

    async def _dispatch(self, request: RequestConfig) -> bool:
        handlers: Dict[RequestType, Callable[[RequestConfig], Awaitable[bool]]] = {
            RequestType.HTTP: self._run_http,
            RequestType.DNS: self._run_dns,
            RequestType.NETWORK: self._run_network,
            RequestType.HEADLESS: self._run_headless,
        }
        handler = handlers.get(request.type)
        if handler is None:
            self.logger.info(f"Unsupported request type: {request.type}")
            return False
        return await handler(request)

    async def _run_http(self, request: RequestConfig) -> bool:
        return await match_http_request(
            self.target_url, request, self.template.id, self.scope,
            self.settings, self.services, self.logger,
        )

    async def _run_dns(self, request: RequestConfig) -> bool:
        return await match_dns_request(
            self.hostname, request, self.template.id, self.scope,
            self.settings.connection_timeout, self.logger,
        )

    async def _run_network(self, request: RequestConfig) -> bool:
        return await match_network_request(
            self.hostname, self.port, request, self.template.id, self.scope,
            self.settings, self.logger,
        )

    async def _run_headless(self, request: RequestConfig) -> bool:
        return await match_headless_request(
            self.target_url, request, self.template.id, self.scope,
            self.settings, self.services, self.logger,
        )


async def match_template(
    target_url: str,
    template: Template,
    settings: AdvancedSettings,
    services: ScanServices,
    page_html: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> bool:
    engine = TemplateEngine(target_url, template, settings, services, page_html, logger)
    return await engine.match()


async def gather_or_cancel(tasks: List["asyncio.Task"]) -> None:
    """Wait for all tasks; if one fails or the caller is cancelled, cancel the rest."""
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class TargetCheck:
    """Matches a batch of templates against one target.

    Matches and errors accumulate on the instance as evaluations finish, so a
    caller that cancels :meth:`run` still sees the partial result.
    """

    def __init__(
        self,
        target_url: str,
        templates: List[Template],
        settings: AdvancedSettings,
        services: ScanServices,
        progress_callback: Optional[ProgressCallback] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.target_url = target_url
        self.templates = templates
        self.settings = settings
        self.services = services
        self.progress_callback = progress_callback
        self.logger = logger or default_logger

        self.matched: List[Template] = []
        self.errors: List[str] = []
        self.completed = 0
        self.page_html: Optional[str] = None

    @property
    def total(self) -> int:
        return len(self.templates)

    def _advance(self) -> None:
        self.completed += 1
        if self.progress_callback:
            self.progress_callback(self.completed, self.total)

    async def fetch_page(self) -> Optional[str]:
        """Render the target once for every template that can match offline."""
        if not needs_page_fetch(self.templates):
            return None
        try:
            page = await self.services.browser.fetch_html(
                self.target_url, timeout=self.settings.headless_timeout
            )
        except BrowserStartError:
            raise
        except HeadlessError as e:
            self.logger.warning(f"Failed to fetch page for {self.target_url}: {e}")
            return None
        return page.html

    async def run(self) -> List[Template]:
        hostname = urlparse(self.target_url).hostname or ""
        self.page_html = await self.fetch_page()
        semaphore = asyncio.Semaphore(self.settings.workers)

        async def evaluate(template: Template) -> None:
            async with semaphore:
                try:
                    matched = await match_template(
                        self.target_url, template, self.settings, self.services,
                        self.page_html, self.logger,
                    )
                except BrowserStartError:
                    raise
                except TemplarError as e:
                    self.logger.error(f"Template {template.id} failed: {e}")
                    self.errors.append(f"Template {template.id}: {e}")
                    matched = False
            if matched:
                self.matched.append(template)
            self._advance()

        tasks = []
        for template in self.templates:
            if not template.matches_host(hostname):
                self._advance()
                continue
            tasks.append(asyncio.create_task(evaluate(template)))

        await gather_or_cancel(tasks)
        return self.matched


async def find_matching_templates(
    target_url: str,
    templates: List[Template],
    settings: AdvancedSettings,
    services: ScanServices,
    progress_callback: Optional[ProgressCallback] = None,
    logger: Optional[logging.Logger] = None,
) -> List[Template]:
    """Return the templates whose conditions hold for ``target_url``."""
    check = TargetCheck(target_url, templates, settings, services, progress_callback, logger)
    return await check.run()
