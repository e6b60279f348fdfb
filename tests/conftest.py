import asyncio

import pytest_asyncio

DIAL_ST = "urn:dial-multiscreen-org:service:dial:1"
LOCATION = "http://192.0.2.10:52235/dd.xml"
APPLICATION_URL = "http://192.0.2.10:8080/apps/"


def ssdp_reply(
    usn: str = "uuid:device-UUID::" + DIAL_ST,
    location: str = LOCATION,
    st: str = DIAL_ST,
    extra: str = "",
) -> bytes:
    return (
        "HTTP/1.1 200 OK\r\n"
        f"LOCATION: {location}\r\n"
        "CACHE-CONTROL: max-age=1800\r\n"
        "EXT:\r\n"
        "SERVER: OS/version UPnP/1.1 product/version\r\n"
        f"ST: {st}\r\n"
        f"USN: {usn}\r\n"
        f"{extra}"
        "\r\n"
    ).encode()


def description_xml(friendly_name: str = "Living Room TV") -> str:
    return f"""<?xml version="1.0" encoding="utf-8" standalone="yes"?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
  <specVersion><major>1</major><minor>0</minor></specVersion>
  <device>
    <deviceType>urn:dial-multiscreen-org:device:dial:1</deviceType>
    <friendlyName>{friendly_name}</friendlyName>
    <manufacturer>FOO</manufacturer>
    <modelName>BAR</modelName>
    <UDN>uuid:device-UUID</UDN>
  </device>
</root>
"""


def app_info_xml(state: str, additional_data: str = "") -> str:
    link = '<link rel="run" href="run"/>' if state == "running" else ""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<service xmlns="urn:dial-multiscreen-org:schemas:dial" dialVer="1.7">
  <name>YouTube</name>
  <options allowStop="true"/>
  <state>{state}</state>
  {link}
  <additionalData>{additional_data}</additionalData>
</service>
"""


class SsdpResponder(asyncio.DatagramProtocol):
    """Loopback stand-in for DIAL devices: answers every M-SEARCH with canned replies."""

    def __init__(self, replies: list[bytes]) -> None:
        self.replies = replies
        self.requests: list[bytes] = []
        self.transport = None

    def connection_made(self, transport) -> None:
        self.transport = transport

    def datagram_received(self, data: bytes, addr) -> None:
        self.requests.append(data)
        for reply in self.replies:
            self.transport.sendto(reply, addr)

    @property
    def address(self) -> tuple[str, int]:
        return self.transport.get_extra_info("sockname")[:2]


@pytest_asyncio.fixture
async def ssdp_responder():
    transports = []

    async def start(replies: list[bytes]) -> SsdpResponder:
        loop = asyncio.get_running_loop()
        transport, protocol = await loop.create_datagram_endpoint(
            lambda: SsdpResponder(replies), local_addr=("127.0.0.1", 0)
        )
        transports.append(transport)
        return protocol

    yield start
    for transport in transports:
        transport.close()
