"""Per-protocol request executors."""

from templar.protocols.dns import match_dns_request
from templar.protocols.headless import match_headless_request
from templar.protocols.http import match_http_request
from templar.protocols.network import match_network_request

__all__ = [
    "match_dns_request",
    "match_headless_request",
    "match_http_request",
    "match_network_request",
]
