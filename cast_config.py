"""
Runtime settings shared by the SSDP, DIAL, wake-on-LAN and Lounge clients.
Values default to the constants below; CastConfig.from_env() lets the environment override them.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

import wakeonlan
from async_upnp_client.ssdp import SSDP_TARGET_V4


# --- Network ---
HTTP_TIMEOUT = 30.0  # seconds, connect + read for every HTTP request
SSDP_ADDRESS = SSDP_TARGET_V4  # 239.255.255.250:1900
WAKEUP_BROADCAST = (wakeonlan.BROADCAST_IP, wakeonlan.DEFAULT_PORT)  # limited broadcast, discard port

# --- Wake-on-LAN recovery ---
WAKEUP_MIN_TIMEOUT = 10.0
WAKEUP_MAX_TIMEOUT = 120.0
WAKEUP_CHECK_INTERVAL = 2.0
WAKEUP_DISCOVERY_TIMEOUT = 2.0

# --- Lounge ---
LOUNGE_MIN_DELAY = 2.0
LOUNGE_MAX_DELAY = LOUNGE_MIN_DELAY + 3.0


def _parse_host_port(value: str, default: tuple[str, int]) -> tuple[str, int]:
    """Parse "host:port" (port optional). Returns default for an empty value."""
    value = value.strip()
    if not value:
        return default
    host, sep, port = value.rpartition(":")
    if not sep:
        return value, default[1]
    return host, int(port)


@dataclass(frozen=True)
class CastConfig:
    http_timeout: float = HTTP_TIMEOUT
    local_address: str | None = None
    ssdp_address: tuple[str, int] = SSDP_ADDRESS
    wakeup_broadcast: tuple[str, int] = WAKEUP_BROADCAST
    wakeup_min_timeout: float = WAKEUP_MIN_TIMEOUT
    wakeup_max_timeout: float = WAKEUP_MAX_TIMEOUT
    wakeup_check_interval: float = WAKEUP_CHECK_INTERVAL
    wakeup_discovery_timeout: float = WAKEUP_DISCOVERY_TIMEOUT
    lounge_min_delay: float = LOUNGE_MIN_DELAY
    lounge_max_delay: float = LOUNGE_MAX_DELAY
    logger: logging.Logger | None = field(default=None, compare=False)

    @classmethod
    def from_env(cls, **overrides) -> "CastConfig":
        """Build a config from TVCAST_* environment variables; keyword overrides win."""
        values = {
            "http_timeout": float(os.environ.get("TVCAST_HTTP_TIMEOUT", str(HTTP_TIMEOUT))),
            "local_address": os.environ.get("TVCAST_LOCAL_ADDRESS") or None,
            "wakeup_broadcast": _parse_host_port(
                os.environ.get("TVCAST_WAKEUP_BROADCAST", ""), WAKEUP_BROADCAST
            ),
        }
        values.update(overrides)
        return cls(**values)

    def get_logger(self, name: str) -> logging.Logger:
        if self.logger is not None:
            return self.logger.getChild(name)
        return logging.getLogger(name)
