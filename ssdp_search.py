"""
SSDP discovery: send one M-SEARCH request and collect the unicast replies until a deadline.
Replies are not deduplicated here, the same device usually answers more than once.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from aiohttp.http_exceptions import BadHttpMessage
from async_upnp_client.exceptions import UpnpError
from async_upnp_client.ssdp import (
    SsdpProtocol,
    build_ssdp_search_packet,
    decode_ssdp_packet,
    get_ssdp_socket,
    is_valid_ssdp_packet,
)
from async_upnp_client.utils import CaseInsensitiveDict

from cast_config import CastConfig
from cast_errors import InvalidResponseError, TransportError


MIN_TIMEOUT = 1.0  # seconds to wait for M-SEARCH responses
MAX_TIMEOUT = 5.0
MAX_RESPONSE_SIZE = 4096

_CLOSED = object()


@dataclass(frozen=True)
class SsdpService:
    unique_service_name: str  # composite id, e.g. "uuid:...::urn:..."
    location: str  # URL of the root device description
    search_target: str
    headers: CaseInsensitiveDict


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


def build_msearch_request(search_target: str, timeout: float, address: tuple[str, int]) -> bytes:
    """MX carries the timeout in whole seconds."""
    return build_ssdp_search_packet(address, int(timeout), search_target)


def service_from_response(request_line: str, headers: CaseInsensitiveDict) -> SsdpService:
    """
    Check a decoded SSDP message is an M-SEARCH response.
    Requires status 200 and non-empty USN, LOCATION and ST headers.
    """
    parts = request_line.split(None, 2)
    if len(parts) < 2 or not parts[0].upper().startswith("HTTP/"):
        raise InvalidResponseError(f"not an M-SEARCH response: {request_line!r}")
    if parts[1] != "200":
        raise InvalidResponseError("invalid M-SEARCH response line: status code != 200")

    required = {}
    for name in ("USN", "LOCATION", "ST"):
        value = (headers.get(name) or "").strip()
        if not value:
            raise InvalidResponseError(f"missing {name} header")
        required[name] = value

    return SsdpService(
        unique_service_name=required["USN"],
        location=required["LOCATION"],
        search_target=required["ST"],
        headers=headers,
    )


def parse_msearch_response(data: bytes, addr: tuple[str, int] = ("0.0.0.0", 0)) -> SsdpService:
    """Decode one M-SEARCH response datagram received from addr."""
    if not is_valid_ssdp_packet(data):
        raise InvalidResponseError("not an SSDP response")
    try:
        request_line, headers = decode_ssdp_packet(data, None, addr)
    except (BadHttpMessage, UnicodeDecodeError) as e:
        raise InvalidResponseError(f"malformed SSDP message: {e}") from e
    return service_from_response(request_line, headers)


class _SearchProtocol(SsdpProtocol):
    """Queues decoded messages, socket errors and the close for SsdpSearch."""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue, log) -> None:
        super().__init__(loop, on_data=self._on_data)
        self._queue = queue
        self._log = log

    def _on_data(self, request_line: str, headers: CaseInsensitiveDict) -> None:
        self._queue.put_nowait((request_line, headers))

    def datagram_received(self, data: bytes, addr: Any) -> None:
        self._log.debug(f"received message from udp {addr} of size {len(data)}")
        try:
            super().datagram_received(data[:MAX_RESPONSE_SIZE], addr)
        except (BadHttpMessage, UnicodeDecodeError) as e:
            self._log.debug(f"error parsing M-SEARCH response from {addr}: {e}")

    def error_received(self, exc: Exception) -> None:
        self._queue.put_nowait(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        super().connection_lost(exc)
        self._queue.put_nowait(exc if exc is not None else _CLOSED)


class SsdpSearch:
    """
    Async iterator over the services answering one M-SEARCH.
    Stops at the deadline, on a socket error, or when closed by the consumer.
    """

    def __init__(
        self,
        transport: asyncio.DatagramTransport,
        queue: asyncio.Queue,
        deadline: float,
        config: CastConfig,
    ) -> None:
        self._transport = transport
        self._queue = queue
        self._deadline = deadline
        self._logger = config.get_logger(__name__)
        self._closed = False

    def __aiter__(self) -> "SsdpSearch":
        return self

    async def __anext__(self) -> SsdpService:
        loop = asyncio.get_running_loop()
        while not self._closed:
            remaining = self._deadline - loop.time()
            if remaining <= 0:
                break
            try:
                item = await asyncio.wait_for(self._queue.get(), remaining)
            except asyncio.TimeoutError:
                break
            if item is _CLOSED:
                break
            if isinstance(item, Exception):
                # always log errors other than the deadline
                self._logger.warning(f"error receiving udp message: {item}")
                break

            request_line, headers = item
            try:
                service = service_from_response(request_line, headers)
            except InvalidResponseError as e:
                addr = headers.get_lower("_remote_addr")
                self._logger.debug(f"error parsing M-SEARCH response from {addr}: {e}")
                continue
            self._logger.debug(
                f"discovered network service {service.unique_service_name!r} at {service.location}"
            )
            return service

        await self.aclose()
        raise StopAsyncIteration

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            self._transport.close()

    async def __aenter__(self) -> "SsdpSearch":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


async def async_search(
    search_target: str,
    timeout: float,
    config: CastConfig | None = None,
) -> SsdpSearch:
    """
    Send an M-SEARCH for search_target and start listening for the replies.
    The socket is bound to an ephemeral port, so concurrent searches do not collide.
    Raises TransportError if the socket cannot be bound or the request cannot be sent.
    """
    config = config or CastConfig()
    log = config.get_logger(__name__)
    timeout = clamp(timeout, MIN_TIMEOUT, MAX_TIMEOUT)

    try:
        sock, source, target = get_ssdp_socket(
            (config.local_address or "0.0.0.0", 0), config.ssdp_address
        )
    except (OSError, UpnpError, ValueError) as e:
        raise TransportError(f"M-SEARCH {search_target}: {e}") from e
    try:
        sock.bind(source)
        log.debug(f"sending M-SEARCH request to udp {target} with ST {search_target!r}")
        sock.sendto(build_msearch_request(search_target, timeout, target), target)
    except OSError as e:
        sock.close()
        raise TransportError(f"M-SEARCH {search_target}: {e}") from e

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    transport, _ = await loop.create_datagram_endpoint(
        lambda: _SearchProtocol(loop, queue, log), sock=sock
    )
    log.debug(
        f"listening on udp {sock.getsockname()} for M-SEARCH responses, timeout {timeout}s"
    )
    return SsdpSearch(transport, queue, loop.time() + timeout, config)
