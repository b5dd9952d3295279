"""HTTP request executor."""

import errno
import logging
import socket
import ssl
from typing import Any, Awaitable, Callable, Dict, Iterator, Optional
from urllib.parse import urlparse

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from templar.config import AdvancedSettings, RequestConfig
from templar.errors import TransientRequestError
from templar.extractors import run_extractors
from templar.matchers import check_matchers
from templar.responses import HTTPResponseData, MatchContext
from templar.services import ScanServices
from templar.utils import build_full_url, normalize_url, sanitize_url
from templar.variables import VariableScope

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
}

TRANSIENT_OS_ERRORS = (ConnectionRefusedError, ConnectionResetError, ConnectionAbortedError, TimeoutError)
TRANSIENT_ERRNOS = {errno.ENETUNREACH, errno.EHOSTUNREACH}

JS_REDIRECT_MARKER = 'top.location="'

REQUEST_ERRORS = (httpx.HTTPError, httpx.InvalidURL, OSError)


def _error_chain(exc: Optional[BaseException]) -> Iterator[BaseException]:
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        exc = exc.__cause__ or exc.__context__


def _is_transient_os_error(exc: BaseException) -> bool:
    if isinstance(exc, socket.gaierror):
        return exc.errno == socket.EAI_AGAIN
    if isinstance(exc, TRANSIENT_OS_ERRORS):
        return True
    return isinstance(exc, OSError) and exc.errno in TRANSIENT_ERRNOS


def is_retryable_error(exc: BaseException) -> bool:
    """Conservative whitelist of transient network failures.

    Timeouts and failed connects are retried, except TLS handshake failures
    and names that do not resolve. Read, write and protocol errors are retried
    only when caused by a refused or reset connection or a temporary
    name-resolution failure.
    """
    chain = list(_error_chain(exc))
    if any(isinstance(e, ssl.SSLError) for e in chain):
        return False
    if any(isinstance(e, socket.gaierror) and e.errno != socket.EAI_AGAIN for e in chain):
        return False
    if isinstance(exc, (httpx.TimeoutException, httpx.ConnectError, TransientRequestError)):
        return True
    if isinstance(exc, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError, OSError)):
        return any(_is_transient_os_error(e) for e in chain)
    return False


def parse_js_redirect(body: str) -> Optional[str]:
    """Target of a ``top.location="..."`` assignment, if the body has one."""
    start = body.find(JS_REDIRECT_MARKER)
    if start == -1:
        return None
    start += len(JS_REDIRECT_MARKER)
    end = body.find('"', start)
    if end == -1:
        return None
    return body[start:end] or None


async def _send_once(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    headers: Dict[str, str],
    body: Optional[str],
    max_body_size: int,
) -> HTTPResponseData:
    async with client.stream(method, url, headers=headers, content=body) as response:
        chunks = bytearray()
        async for chunk in response.aiter_bytes():
            chunks.extend(chunk[: max_body_size - len(chunks)])
            if len(chunks) >= max_body_size:
                break
        return HTTPResponseData(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=bytes(chunks),
            url=str(response.url),
        )


def _log_retry(logger: logging.Logger, url: str, attempts: int) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        wait = state.next_action.sleep if state.next_action else 0
        logger.info(
            f"Request to {sanitize_url(url)} failed (attempt {state.attempt_number}/{attempts}), "
            f"retrying after {wait:.2f}s: {state.outcome.exception()}"
        )
    return before_sleep


async def send_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    headers: Dict[str, str],
    body: Optional[str],
    settings: AdvancedSettings,
    logger: logging.Logger,
    sleep: Callable[[float], Awaitable[Any]],
) -> HTTPResponseData:
    """Send one request, retrying transient failures with linear backoff.

    The wait before retry ``n`` is ``retry_delay * n``. Non-retryable errors
    are raised after the first attempt.
    """
    attempts = settings.retries + 1
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_incrementing(start=settings.retry_delay, increment=settings.retry_delay),
        retry=retry_if_exception(is_retryable_error),
        sleep=sleep,
        before_sleep=_log_retry(logger, url, attempts),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            response = await _send_once(
                client, method, url, headers, body, settings.max_body_size
            )
    response.retries = attempt.retry_state.attempt_number - 1
    return response


async def match_http_request(
    target_url: str,
    request: RequestConfig,
    template_id: str,
    scope: VariableScope,
    settings: AdvancedSettings,
    services: ScanServices,
    logger: logging.Logger,
) -> bool:
    """Run an HTTP request block against a target.

    Each path is tried in order and the first matching response wins. An
    unmatched response carrying a ``top.location`` redirect is followed, bounded
    by ``max_redirects`` and a visited set of normalized URLs. Failures of one
    path are logged and the next path is tried.
    """
    parsed = urlparse(target_url)
    base_url = f"{parsed.scheme}://{parsed.netloc}"
    limiter = services.limiters.get(parsed.hostname or "")

    headers = dict(DEFAULT_HEADERS)
    for name, value in request.headers.items():
        headers[name] = scope.substitute(value)
    body = scope.substitute(request.body) if request.body else None

    for raw_path in request.path or ["{{BaseURL}}"]:
        current_url = build_full_url(base_url, scope.substitute(raw_path))
        visited = set()
        redirect_count = 0

        while True:
            if redirect_count > settings.max_redirects:
                logger.info(f"Max redirects ({settings.max_redirects}) reached for URL {current_url}")
                break
            normalized = normalize_url(current_url)
            if normalized in visited:
                logger.info(f"Redirect loop detected at {current_url}, stopping")
                break
            visited.add(normalized)

            await limiter.acquire()
            try:
                response = await send_with_retry(
                    services.client, request.method, current_url, headers, body,
                    settings, logger, services.sleep,
                )
            except REQUEST_ERRORS as e:
                if is_retryable_error(e):
                    logger.info(
                        f"HTTP request failed after {settings.retries + 1} attempts "
                        f"for template {template_id}, URL {current_url}: {e}"
                    )
                else:
                    logger.error(f"HTTP request failed for template {template_id}, URL {current_url}: {e}")
                break

            ctx = MatchContext.from_http(response)
            matched = check_matchers(request.matchers, request.matchers_condition, ctx, logger)
            logger.info(
                f"Template {template_id}, request {current_url}: matched={matched}, "
                f"status={response.status_code}, retries={response.retries}"
            )

            if matched:
                run_extractors(request.extractors, ctx, scope, logger)
                return True

            redirect_path = parse_js_redirect(response.text)
            if not redirect_path:
                break
            current_url = build_full_url(base_url, redirect_path)
            redirect_count += 1

    return False
