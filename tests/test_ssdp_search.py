import pytest
from async_upnp_client.utils import CaseInsensitiveDict

from cast_config import CastConfig
from cast_errors import InvalidResponseError, TransportError
from ssdp_search import (
    MAX_TIMEOUT,
    MIN_TIMEOUT,
    async_search,
    build_msearch_request,
    clamp,
    parse_msearch_response,
)
from tests.conftest import DIAL_ST, LOCATION, ssdp_reply


def test_parse_msearch_response_good():
    service = parse_msearch_response(
        b"HTTP/1.1 200 OK\r\n"
        b"LOCATION: http://192.168.1.1:52235/dd.xml\r\n"
        b"CACHE-CONTROL: max-age=1800\r\n"
        b"EXT:\r\n"
        b"BOOTID.UPNP.ORG: 1\r\n"
        b"SERVER: OS/version UPnP/1.1 product/version\r\n"
        b"USN: uuid-foo-bar-baz\r\n"
        b"ST: urn:dial-multiscreen-org:service:dial:1\r\n"
        b"WAKEUP: MAC=10:dd:b1:c9:00:e4;Timeout=10\r\n"
        b"\r\n"
    )
    assert service.unique_service_name == "uuid-foo-bar-baz"
    assert service.location == "http://192.168.1.1:52235/dd.xml"
    assert service.search_target == DIAL_ST
    assert service.headers["wakeup"] == "MAC=10:dd:b1:c9:00:e4;Timeout=10"
    assert service.headers["Cache-Control"] == "max-age=1800"


@pytest.mark.parametrize(
    "data",
    [
        b"HTTP/1.1 200 OK\r\nFOO\r\nBAR\r\n\r\n",
        b"HTTP/1.1 500 Internal Server Error\r\n\r\n",
        b"HTTP/1.1 404 Not Found\r\nUSN: x\r\nLOCATION: http://h/\r\nST: st\r\n\r\n",
        b"HTTP/1.1 200 OK\r\nLOCATION: http://192.168.1.1:52235/dd.xml\r\nST: st\r\n\r\n",
        b"HTTP/1.1 200 OK\r\nUSN: device UUID\r\nST: st\r\n\r\n",
        b"HTTP/1.1 200 OK\r\nLOCATION: http://192.168.1.1:52235/dd.xml\r\nUSN: device UUID\r\n\r\n",
        b"HTTP/1.1 200 OK\r\nUSN:   \r\nLOCATION: http://h/\r\nST: st\r\n\r\n",
        b"NOTIFY * HTTP/1.1\r\nHOST: 239.255.255.250:1900\r\n\r\n",
        b"",
    ],
)
def test_parse_msearch_response_rejects(data):
    with pytest.raises(InvalidResponseError):
        parse_msearch_response(data)


def test_build_msearch_request():
    request = build_msearch_request(DIAL_ST, 3.7, ("239.255.255.250", 1900))
    assert request == (
        b"M-SEARCH * HTTP/1.1\r\n"
        b"HOST:239.255.255.250:1900\r\n"
        b'MAN:"ssdp:discover"\r\n'
        b"MX:3\r\n"
        b"ST:urn:dial-multiscreen-org:service:dial:1\r\n"
        b"\r\n"
    )


def test_clamp():
    assert clamp(0, MIN_TIMEOUT, MAX_TIMEOUT) == MIN_TIMEOUT
    assert clamp(3, MIN_TIMEOUT, MAX_TIMEOUT) == 3
    assert clamp(600, MIN_TIMEOUT, MAX_TIMEOUT) == MAX_TIMEOUT


@pytest.mark.asyncio
async def test_async_search_collects_replies(ssdp_responder):
    responder = await ssdp_responder(
        [
            ssdp_reply(),
            b"HTTP/1.1 200 OK\r\ngarbage\r\n\r\n",
            ssdp_reply(),
            ssdp_reply(usn="uuid:other", location="http://192.0.2.11:1/dd.xml"),
        ]
    )
    config = CastConfig(local_address="127.0.0.1", ssdp_address=responder.address)

    search = await async_search(DIAL_ST, 0, config)
    services = [service async for service in search]

    assert len(responder.requests) == 1
    request = responder.requests[0].decode()
    assert request.startswith("M-SEARCH * HTTP/1.1\r\n")
    assert f"HOST:{responder.address[0]}:{responder.address[1]}\r\n" in request
    assert 'MAN:"ssdp:discover"\r\n' in request
    assert "MX:1\r\n" in request
    assert f"ST:{DIAL_ST}\r\n" in request

    # not deduplicated at this layer, malformed datagram skipped
    assert [s.location for s in services] == [LOCATION, LOCATION, "http://192.0.2.11:1/dd.xml"]
    assert isinstance(services[0].headers, CaseInsensitiveDict)
    assert services[0].headers["cache-control"] == "max-age=1800"
    assert services[0].headers.get_lower("_remote_addr") == responder.address


@pytest.mark.asyncio
async def test_async_search_can_be_closed_early(ssdp_responder):
    responder = await ssdp_responder([ssdp_reply(), ssdp_reply()])
    config = CastConfig(local_address="127.0.0.1", ssdp_address=responder.address)

    async with await async_search(DIAL_ST, 5, config) as search:
        first = await search.__anext__()
    assert first.location == LOCATION
    with pytest.raises(StopAsyncIteration):
        await search.__anext__()


@pytest.mark.asyncio
async def test_async_search_bind_failure_raises():
    config = CastConfig(local_address="192.0.2.254")  # TEST-NET, not a local address
    with pytest.raises(TransportError):
        await async_search(DIAL_ST, 1, config)
