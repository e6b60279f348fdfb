"""
One HTTP round trip over an aiohttp session, with errors mapped to cast_errors kinds.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Container, Mapping
from dataclasses import dataclass
from typing import Any

import aiohttp
from multidict import CIMultiDictProxy

from cast_errors import BadStatusError, TransportError

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = range(200, 300)


@dataclass(frozen=True)
class HttpReply:
    status: int
    headers: CIMultiDictProxy[str]
    text: str


async def fetch(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    *,
    timeout: float,
    headers: Mapping[str, str] | None = None,
    params: Mapping[str, str] | None = None,
    data: Any = None,
    ok: Container[int] = SUCCESS_STATUSES,
    log: logging.Logger | None = None,
) -> HttpReply:
    """
    Send one request and read the whole body.
    Raises TransportError when no response arrives, BadStatusError when status is not in ok.
    """
    (log or logger).debug(f"{method} {url}")
    try:
        async with session.request(
            method,
            url,
            headers=headers,
            params=params,
            data=data,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            text = await resp.text(errors="replace")
            reply = HttpReply(status=resp.status, headers=resp.headers, text=text)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise TransportError(f"{method} {url}: {str(e) or type(e).__name__}") from e

    if reply.status not in ok:
        raise BadStatusError(method, url, reply.status)
    return reply
