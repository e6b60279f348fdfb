"""
DIAL (DIscovery And Launch) client: find DIAL servers with SSDP, read their description,
query and launch applications, and wake sleeping devices with wake-on-LAN.
See http://www.dial-multiscreen.org/
"""
from __future__ import annotations

import asyncio
import posixpath
import re
from collections.abc import AsyncIterator, Mapping
from contextlib import aclosing
from dataclasses import dataclass

import aiohttp
import xmltodict
from xml.parsers.expat import ExpatError
from yarl import URL

from cast_config import CastConfig
from cast_errors import (
    BadStatusError,
    CastError,
    InvalidResponseError,
    MissingApplicationUrlError,
    NoMacError,
    TransportError,
    WakeupFailedError,
)
from cast_http import fetch
from ssdp_search import SsdpSearch, SsdpService, async_search, clamp
from wake_on_lan import wakeup


DIAL_SEARCH_TARGET = "urn:dial-multiscreen-org:service:dial:1"

_WAKEUP_RE = re.compile(r"^\s*MAC\s*=\s*([^;\s]+)\s*;\s*Timeout\s*=\s*(\d+)\s*$", re.IGNORECASE)
_ADDITIONAL_DATA_RE = re.compile(
    r"<(?:[\w.-]+:)?additionalData(?:\s[^>]*)?>(.*?)</(?:[\w.-]+:)?additionalData\s*>",
    re.DOTALL,
)
_DONE = object()


@dataclass(frozen=True)
class Wakeup:
    """WAKEUP header of the SSDP reply. The zero value means wake-on-LAN is unsupported."""

    mac: str = ""
    timeout: int = 0  # seconds the device needs to wake up and start its DIAL server


@dataclass(frozen=True)
class Device:
    unique_service_name: str
    location: str  # URL of the device description
    application_url: str  # base URL of the DIAL REST service
    friendly_name: str
    wakeup: Wakeup = Wakeup()

    @property
    def host(self) -> str:
        return URL(self.application_url).host or self.application_url


@dataclass(frozen=True)
class AppInfo:
    name: str
    # running, stopped, hidden or installable=<URL>; anything else is invalid
    state: str
    allow_stop: bool = False
    run_link: str | None = None  # instance URL, only while running
    additional_data: str = ""  # raw inner XML of <additionalData>

    @property
    def installable_url(self) -> str | None:
        for prefix in ("installable=", "installable:"):
            if self.state.startswith(prefix):
                return self.state[len(prefix):]
        return None

    @property
    def has_valid_state(self) -> bool:
        return self.state in ("running", "stopped", "hidden") or self.installable_url is not None


def parse_wakeup(value: str | None) -> Wakeup:
    """Parse "MAC=<mac>;Timeout=<seconds>". Anything unexpected gives the zero Wakeup."""
    if not value:
        return Wakeup()
    m = _WAKEUP_RE.match(value)
    if not m:
        return Wakeup()
    return Wakeup(mac=m.group(1), timeout=int(m.group(2)))


def _child(node, name: str):
    """Child element of an xmltodict node, ignoring any namespace prefix."""
    if not isinstance(node, dict):
        return None
    for key, value in node.items():
        if key == name or key.endswith(":" + name):
            return value
    return None


def _text(node) -> str:
    if isinstance(node, list):
        node = node[0] if node else None
    if isinstance(node, dict):
        node = node.get("#text")
    return (node or "").strip()


def _parse_xml(body: str, what: str) -> dict:
    try:
        doc = xmltodict.parse(body.strip())
    except ExpatError as e:
        raise InvalidResponseError(f"{what}: {e}") from e
    root = next(iter(doc.values()), None)
    return root if isinstance(root, dict) else {}


def parse_device(service: SsdpService, headers: Mapping[str, str], body: str) -> Device:
    """Join an SSDP service with its description reply (headers and XML body)."""
    app_url = (headers.get("Application-URL") or "").strip()
    if not app_url:
        raise MissingApplicationUrlError(service.location)

    device = _child(_parse_xml(body, service.location), "device")
    if not isinstance(device, dict) or _child(device, "friendlyName") is None:
        raise InvalidResponseError(f"{service.location}: missing device friendlyName")

    return Device(
        unique_service_name=service.unique_service_name,
        location=service.location,
        application_url=app_url,
        friendly_name=_text(_child(device, "friendlyName")),
        wakeup=parse_wakeup(service.headers.get("WAKEUP")),
    )


def parse_app_info(body: str) -> AppInfo:
    """Decode a DIAL application resource. Unknown elements are ignored."""
    root = _parse_xml(body, "app info")
    options = _child(root, "options")
    link = _child(root, "link")
    m = _ADDITIONAL_DATA_RE.search(body)
    return AppInfo(
        name=_text(_child(root, "name")),
        state=_text(_child(root, "state")),
        allow_stop=isinstance(options, dict) and options.get("@allowStop", "").strip() == "true",
        run_link=link.get("@href") if isinstance(link, dict) else None,
        additional_data=m.group(1) if m else "",
    )


class DialClient:
    """DIAL operations over one aiohttp session."""

    def __init__(self, session: aiohttp.ClientSession, config: CastConfig | None = None) -> None:
        self._session = session
        self._config = config or CastConfig()
        self._logger = self._config.get_logger(__name__)

    async def discover(self, timeout: float) -> AsyncIterator[Device]:
        """
        Yield each DIAL device answering within timeout, once per unique service name.
        Descriptions are fetched concurrently; a device whose description fails is dropped.
        """
        search = await async_search(DIAL_SEARCH_TARGET, timeout, self._config)
        queue: asyncio.Queue = asyncio.Queue()
        producer = asyncio.create_task(self._fan_out(search, queue))
        try:
            while True:
                device = await queue.get()
                if device is _DONE:
                    break
                yield device
            await producer
        finally:
            if not producer.done():
                producer.cancel()
                await asyncio.gather(producer, return_exceptions=True)
            await search.aclose()

    async def _fan_out(self, search: SsdpSearch, queue: asyncio.Queue) -> None:
        seen: set[str] = set()
        workers: list[asyncio.Task] = []
        try:
            async for service in search:
                if service.search_target != DIAL_SEARCH_TARGET:
                    continue
                if service.unique_service_name in seen:
                    continue
                seen.add(service.unique_service_name)
                workers.append(asyncio.create_task(self._describe_into(service, queue)))
            await asyncio.gather(*workers)
        except BaseException:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        finally:
            queue.put_nowait(_DONE)

    async def _describe_into(self, service: SsdpService, queue: asyncio.Queue) -> None:
        try:
            device = await self.describe(service)
        except CastError as e:
            self._logger.warning(f"{service.location}: parse device: {e}")
            return
        self._logger.info(f"discovered DIAL device {device.friendly_name!r}")
        queue.put_nowait(device)

    async def async_discover(self, timeout: float) -> list[Device]:
        """Run discover() to completion and collect the devices."""
        async with aclosing(self.discover(timeout)) as devices:
            return [device async for device in devices]

    async def describe(self, service: SsdpService) -> Device:
        """Fetch the description of an SSDP service and build its Device."""
        reply = await fetch(
            self._session,
            "GET",
            service.location,
            timeout=self._config.http_timeout,
            ok=(200,),
            log=self._logger,
        )
        return parse_device(service, reply.headers, reply.text)

    def _app_url(self, device: Device, app_name: str) -> str:
        url = URL(device.application_url)
        return str(url.with_path(posixpath.join(url.path or "/", app_name)))

    async def get_app_info(self, device: Device, app_name: str, origin: str = "") -> AppInfo:
        """
        Information about app_name, a name registered in the DIAL registry.
        origin, when given, is sent as the Origin header.
        """
        reply = await fetch(
            self._session,
            "GET",
            self._app_url(device, app_name),
            timeout=self._config.http_timeout,
            headers={"Origin": origin} if origin else None,
            log=self._logger,
        )
        return parse_app_info(reply.text)

    async def launch(
        self, device: Device, app_name: str, origin: str = "", payload: str = ""
    ) -> str:
        """Start app_name on the device. Returns the instance URL (possibly empty)."""
        headers = {}
        if origin:
            headers["Origin"] = origin
        if payload:
            headers["Content-Type"] = "text/plain; charset=utf-8"
        reply = await fetch(
            self._session,
            "POST",
            self._app_url(device, app_name),
            timeout=self._config.http_timeout,
            headers=headers,
            data=payload.encode("utf-8") if payload else None,
            log=self._logger,
        )
        return reply.headers.get("Location", "")

    async def ping(self, device: Device, timeout: float | None = None) -> bool:
        """True if the device answers at all; a bad status still proves it is up."""
        try:
            await fetch(
                self._session,
                "GET",
                device.location,
                timeout=self._config.http_timeout if timeout is None else timeout,
                log=self._logger,
            )
        except BadStatusError:
            return True
        except TransportError as e:
            self._logger.debug(f"ping {device.friendly_name!r}: {e}")
            return False
        return True

    async def try_wakeup(self, device: Device) -> Device:
        """
        Wake the device with wake-on-LAN and wait until it is reachable.
        Returns the live Device: the same one if it answers at its old location,
        the re-discovered one if it came back at a new address.
        """
        if not device.wakeup.mac:
            raise NoMacError()

        cfg = self._config
        budget = clamp(device.wakeup.timeout * 2, cfg.wakeup_min_timeout, cfg.wakeup_max_timeout)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + budget
        self._logger.info(f"waking up {device.friendly_name!r}, waiting up to {budget}s")

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            # resend every time, UDP is lossy and the device may still be powering on
            wakeup(device.wakeup.mac, cfg.wakeup_broadcast, cfg.local_address)
            # ping is bounded by the deadline too
            if await self.ping(device, min(cfg.http_timeout, remaining)):
                return device
            found = await self._rediscover(device.unique_service_name)
            if found is not None:
                self._logger.info(f"{device.friendly_name!r} is back at {found.location}")
                return found
            remaining = deadline - loop.time()
            if remaining > 0:
                await asyncio.sleep(min(cfg.wakeup_check_interval, remaining))

        raise WakeupFailedError(device.friendly_name)

    async def _rediscover(self, unique_service_name: str) -> Device | None:
        async with aclosing(self.discover(self._config.wakeup_discovery_timeout)) as devices:
            async for found in devices:
                if found.unique_service_name == unique_service_name:
                    return found
        return None
