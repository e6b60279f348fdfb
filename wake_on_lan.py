"""
Wake-on-LAN: send a magic packet (6 x 0xFF, then the MAC address 16 times) over UDP.
See https://en.wikipedia.org/wiki/Wake-on-LAN
"""
from __future__ import annotations

import logging

import wakeonlan

from cast_config import WAKEUP_BROADCAST
from cast_errors import InvalidMacError, TransportError

logger = logging.getLogger(__name__)


def make_magic_packet(mac: str) -> bytes:
    """
    Magic packet for a 6-octet hardware address: 01:23:45:67:89:ab, 01-23-45-67-89-ab,
    0123.4567.89ab or 0123456789ab. Raises InvalidMacError when malformed.
    """
    mac = mac.strip()
    # wakeonlan reads "mac/password" as a SecureOn pair
    if "/" in mac:
        raise InvalidMacError(f"invalid MAC address {mac!r}")
    try:
        return wakeonlan.create_magic_packet(mac)
    except ValueError as e:
        raise InvalidMacError(f"invalid MAC address {mac!r}") from e


def parse_mac(mac: str) -> bytes:
    """The 6 octets of a hardware address."""
    return make_magic_packet(mac)[6:12]


def wakeup(
    mac: str,
    broadcast_addr: tuple[str, int] = WAKEUP_BROADCAST,
    local_address: str | None = None,
) -> None:
    """
    Send one magic packet for mac to broadcast_addr, usually the limited broadcast
    address on the discard port. Nothing is awaited back.
    """
    mac = parse_mac(mac).hex(":")
    host, port = broadcast_addr
    try:
        wakeonlan.send_magic_packet(mac, ip_address=host, port=port, interface=local_address)
    except OSError as e:
        raise TransportError(f"wake-on-lan {mac} via {broadcast_addr}: {e}") from e
    logger.debug(f"sent magic packet for {mac} to udp {broadcast_addr}")
