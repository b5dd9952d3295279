"""Raw TCP/UDP request executor."""

import asyncio
import logging
from typing import Any, List, Optional, Tuple

from templar.config import AdvancedSettings, RequestConfig
from templar.errors import RequestError, TransientRequestError, UnsupportedRequestError
from templar.extractors import run_extractors
from templar.matchers import check_matchers
from templar.responses import MatchContext, NetworkResponse
from templar.variables import VariableScope, first_payload, to_value

TCP_PROTOCOLS = ("tcp", "tcp4", "tcp6")
UDP_PROTOCOLS = ("udp", "udp4", "udp6")

# ValueError includes the UnicodeError raised for host names IDNA cannot encode
SOCKET_ERRORS = (OSError, ValueError)


def protocol_for(request: RequestConfig) -> str:
    protocol = request.options.get("protocol")
    if isinstance(protocol, str) and protocol.strip():
        return protocol.strip().lower()
    return "tcp"


def payload_for(request: RequestConfig, scope: VariableScope) -> Optional[bytes]:
    """Bytes to send: the ``default`` payload, else the first ``inputs`` entry.

    A payload may be a plain string, a list (first item is sent) or a mapping
    of lists (first item of the first non-empty list is sent).
    """
    raw: Any = request.payloads.get("default")
    if raw is None:
        inputs = (request.model_extra or {}).get("inputs") or []
        if inputs and isinstance(inputs[0], dict):
            raw = inputs[0].get("data")
    if raw is None:
        return None
    value = first_payload(to_value(raw))
    if not value:
        return None
    return scope.substitute(value).encode("utf-8")


def address_for(request: RequestConfig, scope: VariableScope, default_host: str, default_port: int) -> Tuple[str, int]:
    """``host:port`` from the request's ``host`` or ``path`` entries, else the target."""
    candidates: List[Any] = (request.model_extra or {}).get("host") or request.path
    if isinstance(candidates, str):
        candidates = [candidates]
    address = scope.substitute(str(candidates[0])).strip() if candidates else ""
    if not address:
        return default_host, default_port

    for prefix in ("tcp://", "udp://", "tls://"):
        if address.startswith(prefix):
            address = address[len(prefix):]
    host, sep, port = address.rpartition(":")
    if sep and port.isdigit():
        return host.strip("[]") or default_host, int(port)
    return address, default_port


class _DatagramCollector(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.received: asyncio.Future = asyncio.get_running_loop().create_future()

    def datagram_received(self, data: bytes, addr) -> None:
        if not self.received.done():
            self.received.set_result(data)

    def error_received(self, exc: Exception) -> None:
        if not self.received.done():
            self.received.set_exception(exc)


async def _exchange_tcp(host: str, port: int, payload: Optional[bytes], settings: AdvancedSettings) -> bytes:
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), settings.network_connect_timeout
        )
    except asyncio.TimeoutError as e:
        raise TransientRequestError(f"connect to {host}:{port} timed out") from e
    except SOCKET_ERRORS as e:
        raise RequestError(f"connect to {host}:{port} failed: {e}") from e

    try:
        if payload:
            writer.write(payload)
            await writer.drain()
        return await asyncio.wait_for(
            reader.read(settings.network_buffer_size), settings.network_read_timeout
        )
    except asyncio.TimeoutError as e:
        raise TransientRequestError(f"read from {host}:{port} timed out") from e
    except SOCKET_ERRORS as e:
        raise RequestError(f"exchange with {host}:{port} failed: {e}") from e
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass


async def _exchange_udp(host: str, port: int, payload: Optional[bytes], settings: AdvancedSettings) -> bytes:
    loop = asyncio.get_running_loop()
    try:
        transport, protocol = await asyncio.wait_for(
            loop.create_datagram_endpoint(_DatagramCollector, remote_addr=(host, port)),
            settings.network_connect_timeout,
        )
    except asyncio.TimeoutError as e:
        raise TransientRequestError(f"connect to {host}:{port} timed out") from e
    except SOCKET_ERRORS as e:
        raise RequestError(f"connect to {host}:{port} failed: {e}") from e

    try:
        if payload:
            transport.sendto(payload)
        data = await asyncio.wait_for(protocol.received, settings.network_read_timeout)
        return data[: settings.network_buffer_size]
    except asyncio.TimeoutError as e:
        raise TransientRequestError(f"read from {host}:{port} timed out") from e
    except SOCKET_ERRORS as e:
        raise RequestError(f"exchange with {host}:{port} failed: {e}") from e
    finally:
        transport.close()


async def match_network_request(
    host: str,
    port: int,
    request: RequestConfig,
    template_id: str,
    scope: VariableScope,
    settings: AdvancedSettings,
    logger: logging.Logger,
) -> bool:
    """Send the declared payload over TCP or UDP and match what comes back.

    Raises:
        UnsupportedRequestError: the ``protocol`` option is not tcp or udp
        RequestError: connecting or reading failed
    """
    protocol = protocol_for(request)
    host, port = address_for(request, scope, host, port)
    payload = payload_for(request, scope)

    if protocol in TCP_PROTOCOLS:
        data = await _exchange_tcp(host, port, payload, settings)
    elif protocol in UDP_PROTOCOLS:
        data = await _exchange_udp(host, port, payload, settings)
    else:
        raise UnsupportedRequestError(f"unsupported network protocol: {protocol}")

    if not data:
        raise RequestError(f"connection to {host}:{port} closed without data")

    ctx = MatchContext(network=NetworkResponse(data=data), body=data)
    matched = check_matchers(request.matchers, request.matchers_condition, ctx, logger)
    logger.info(f"Template {template_id}, network request to {host}:{port}: matched={matched}")
    if matched:
        run_extractors(request.extractors, ctx, scope, logger)
    return matched
