"""Headless (rendered page) request executor."""

import logging
from urllib.parse import urlparse

from templar.config import AdvancedSettings, RequestConfig
from templar.extractors import run_extractors
from templar.matchers import check_matchers
from templar.responses import MatchContext
from templar.services import ScanServices
from templar.utils import build_full_url
from templar.variables import VariableScope


def headless_url(target_url: str, request: RequestConfig, scope: VariableScope) -> str:
    if not request.path:
        return target_url
    parsed = urlparse(target_url)
    base_url = f"{parsed.scheme}://{parsed.netloc}"
    return build_full_url(base_url, scope.substitute(request.path[0]))


async def match_headless_request(
    target_url: str,
    request: RequestConfig,
    template_id: str,
    scope: VariableScope,
    settings: AdvancedSettings,
    services: ScanServices,
    logger: logging.Logger,
) -> bool:
    """Render the request URL in a browser tab and match the final HTML.

    Raises:
        HeadlessError: the browser could not start or the page failed to render
    """
    url = headless_url(target_url, request, scope)
    page = await services.browser.fetch_html(url, timeout=settings.headless_timeout)

    ctx = MatchContext.from_headless(page)
    matched = check_matchers(request.matchers, request.matchers_condition, ctx, logger)
    logger.info(
        f"Template {template_id}, headless request to {url}: matched={matched}, "
        f"response_len={len(page.html)}"
    )
    if matched:
        run_extractors(request.extractors, ctx, scope, logger)
    return matched
