"""DNS request executor."""

import asyncio
import logging
from typing import List

import dns.exception
import dns.resolver

from templar.config import RequestConfig
from templar.errors import RequestError, TransientRequestError
from templar.extractors import run_extractors
from templar.matchers import check_matchers
from templar.responses import DNSResponse, MatchContext
from templar.variables import VariableScope

SUPPORTED_QUERY_TYPES = ("A", "AAAA", "TXT", "CNAME", "NS", "MX")


def query_type_for(request: RequestConfig) -> str:
    """Record type from ``query_type``, else the first path entry, else A."""
    if request.query_type:
        return request.query_type.strip().upper()
    if request.path and request.path[0].strip():
        return request.path[0].strip().upper()
    return "A"


def _record_text(rdata, query_type: str) -> str:
    if query_type == "TXT":
        return "".join(s.decode("utf-8", errors="replace") for s in rdata.strings)
    if query_type in ("CNAME", "NS"):
        return rdata.target.to_text()
    if query_type == "MX":
        return rdata.exchange.to_text()
    return rdata.to_text()


def resolve_records(host: str, query_type: str, timeout: float) -> List[str]:
    """Blocking lookup of ``query_type`` records for ``host``.

    Raises:
        TransientRequestError: the lookup timed out
        RequestError: the name is malformed or does not exist, or no server
            answered
    """
    try:
        resolver = dns.resolver.Resolver()
        resolver.timeout = timeout
        resolver.lifetime = max(timeout * 2, timeout + 1.0)
        answers = resolver.resolve(host, query_type)
    except dns.resolver.NoAnswer:
        return []
    except dns.exception.Timeout as e:
        raise TransientRequestError(f"DNS lookup timeout for {host}: {e}") from e
    except (dns.resolver.NXDOMAIN, dns.resolver.YXDOMAIN, dns.resolver.NoNameservers) as e:
        raise RequestError(f"DNS lookup error for host {host}: {e}") from e
    except (dns.exception.DNSException, UnicodeError) as e:
        raise RequestError(f"DNS lookup failed for host {host}: {e}") from e
    return [_record_text(rr, query_type) for rr in answers]


async def match_dns_request(
    host: str,
    request: RequestConfig,
    template_id: str,
    scope: VariableScope,
    timeout: float,
    logger: logging.Logger,
) -> bool:
    """Look up the request's record type for ``host`` and match the records.

    An unsupported record type is a non-match, not an error.
    """
    query_type = query_type_for(request)
    if query_type not in SUPPORTED_QUERY_TYPES:
        logger.info(f"Unsupported DNS query type: {query_type}")
        return False

    records = await asyncio.to_thread(resolve_records, host, query_type, timeout)

    ctx = MatchContext(dns=DNSResponse(records=records, query_type=query_type))
    matched = check_matchers(request.matchers, request.matchers_condition, ctx, logger)
    logger.info(
        f"Template {template_id}, DNS request for host {host}, query type {query_type}: "
        f"matched={matched}, records={records}"
    )
    if matched:
        run_extractors(request.extractors, MatchContext(body=ctx.dns.raw.encode("utf-8")), scope, logger)
    return matched
