"""
Minimal client for the YouTube Lounge API, used to play videos on a "screen" (the YouTube TV app).
The API is not public: the request fields below are reverse engineered and can break at any time.
"""
from __future__ import annotations

import asyncio
import json
import random
import time
from dataclasses import dataclass
from typing import Any

import aiohttp

from cast_config import CastConfig
from cast_errors import (
    InvalidPairingCodeError,
    InvalidResponseError,
    MissingSessionIdsError,
    NoLoungeTokenError,
    NoScreensError,
)
from cast_http import fetch
from video_ref import extract_video_info


API_BASE = "https://www.youtube.com/api/lounge"
API_GET_LOUNGE_TOKEN = API_BASE + "/pairing/get_lounge_token_batch"
API_GET_SCREEN = API_BASE + "/pairing/get_screen"
API_BIND = API_BASE + "/bc/bind"

PARAM_APP = "youtube-desktop"
PARAM_CVER = "1"
PARAM_DEVICE = "REMOTE_CONTROL"
PARAM_ID = "remote"
PARAM_VER = "8"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/96.0.4664.45 Safari/537.36"
)

# Origin header value for requests to YouTube services
ORIGIN = "https://www.youtube.com"

# YouTube application name in the DIAL registry
DIAL_APP_NAME = "YouTube"


@dataclass(frozen=True)
class LoungeToken:
    value: str
    expiration: int  # epoch milliseconds

    def expired(self, now_ms: int | None = None) -> bool:
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return now_ms > self.expiration


@dataclass(frozen=True)
class LoungeSessionIds:
    sid: str
    gsessionid: str


async def _rand_delay(low: float, high: float) -> None:
    await asyncio.sleep(random.uniform(low, high))


def _loads(data: str, what: str) -> Any:
    try:
        return json.loads(data)
    except json.JSONDecodeError as e:
        raise InvalidResponseError(f"{what}: {e}") from e


def extract_lounge_token(data: str) -> LoungeToken:
    """Token of the first entry of the "screens" array."""
    body = _loads(data, "lounge token")
    screens = body.get("screens") if isinstance(body, dict) else None
    if not isinstance(screens, list) or not screens:
        raise NoScreensError()
    first = screens[0] if isinstance(screens[0], dict) else {}
    if not first.get("loungeToken"):
        raise NoLoungeTokenError()
    return LoungeToken(first["loungeToken"], int(first.get("expiration") or 0))


def extract_screen_info(data: str) -> tuple[str, str, LoungeToken]:
    """(screen id, screen name, token) from a pairing reply."""
    body = _loads(data, "screen")
    screen = body.get("screen") if isinstance(body, dict) else None
    if not isinstance(screen, dict) or not screen.get("screenId"):
        raise NoScreensError()
    if not screen.get("loungeToken"):
        raise NoLoungeTokenError()
    token = LoungeToken(screen["loungeToken"], int(screen.get("expiration") or 0))
    return screen["screenId"], screen.get("name", ""), token


def extract_session_ids(data: str) -> LoungeSessionIds:
    """
    Find the session ids in a bind reply. The reply starts with a number (the payload length)
    followed by an array of [index, [key, value, ...]] records in no fixed order: "c" carries
    the SID and "S" the gsessionid, every other record is skipped.
    """
    start = data.find("[")
    if start < 0:
        raise MissingSessionIdsError()
    try:
        # more length-prefixed chunks may follow the first array
        records, _ = json.JSONDecoder().raw_decode(data, start)
    except json.JSONDecodeError as e:
        raise InvalidResponseError(f"bind: {e}") from e

    sid = gsessionid = ""
    for record in records if isinstance(records, list) else ():
        if not isinstance(record, list) or len(record) < 2:
            continue
        event = record[1]
        if not isinstance(event, list) or len(event) < 2:
            continue
        key, value = event[0], event[1]
        if not isinstance(key, str) or not isinstance(value, str):
            continue
        if key == "c":
            sid = value
        elif key == "S":
            gsessionid = value
        else:
            continue
        if sid and gsessionid:
            return LoungeSessionIds(sid, gsessionid)
    raise MissingSessionIdsError()


class Remote:
    """
    Lounge session bound to one screen. Requests on the same Remote are serialized;
    Remotes for different screens are independent.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        screen_id: str,
        name: str,
        config: CastConfig | None = None,
    ) -> None:
        self.screen_id = screen_id
        self.name = name  # displayed on the screen at connection time
        self.token: LoungeToken | None = None
        self.session_ids: LoungeSessionIds | None = None
        self.request_id = 0
        self._session = session
        self._config = config or CastConfig()
        self._logger = self._config.get_logger(__name__)
        self._lock = asyncio.Lock()

    @classmethod
    async def connect(
        cls,
        session: aiohttp.ClientSession,
        screen_id: str,
        name: str,
        config: CastConfig | None = None,
    ) -> "Remote":
        """Connect to the screen identified by screen_id (from DIAL additionalData)."""
        remote = cls(session, screen_id, name, config)
        await remote.refresh_token()
        return remote

    @classmethod
    async def connect_with_code(
        cls,
        session: aiohttp.ClientSession,
        code: str,
        name: str,
        config: CastConfig | None = None,
    ) -> "Remote":
        """Connect using the pairing code shown by the TV app ("Link with TV code")."""
        cleaned = code.replace("-", "").replace(" ", "")
        if not (cleaned.isdigit() and len(cleaned) == 12):
            raise InvalidPairingCodeError(f"invalid TV code {code!r}")
        remote = cls(session, "", name, config)
        reply = await remote._request(API_GET_SCREEN, data={"pairing_code": cleaned})
        remote.screen_id, screen_name, remote.token = extract_screen_info(reply)
        remote._logger.info(f"paired with screen {screen_name!r}")
        return remote

    def expired(self) -> bool:
        """True if there is no token or it has expired."""
        return self.token is None or self.token.expired()

    async def refresh_token(self) -> None:
        """Get a new lounge token for screen_id. Use it when the token has expired()."""
        async with self._lock:
            reply = await self._request(API_GET_LOUNGE_TOKEN, data={"screen_ids": self.screen_id})
            self.token = extract_lounge_token(reply)

    async def play(self, videos: list[str]) -> None:
        """Play the first video now and queue the others. Accepts video ids and URLs."""
        if not videos:
            return
        async with self._lock:
            await self._get_session_ids()
            refs = [extract_video_info(v) for v in videos]
            body = {
                "count": "1",
                "req0__sc": "setPlaylist",
                "req0_videoId": refs[0].video_id,
                "req0_currentIndex": "0",
                # start time can be set only for the first video
                "req0_currentTime": str(refs[0].start_time),
                "req0_videoIds": ",".join(ref.video_id for ref in refs),
            }
            await self._request(API_BIND, params=self._bind_params(), data=body)

    async def add(self, videos: list[str]) -> None:
        """Queue videos without changing what is playing. Accepts video ids and URLs."""
        if not videos:
            return
        async with self._lock:
            await self._get_session_ids()
            for i, video in enumerate(videos):
                # addVideo takes a single id, and back to back requests lose queue
                # entries: each one waits a random delay and uses its own reqN_ index
                await _rand_delay(self._config.lounge_min_delay, self._config.lounge_max_delay)
                body = {
                    "count": "1",
                    f"req{i}__sc": "addVideo",
                    f"req{i}_videoId": extract_video_info(video).video_id,
                }
                await self._request(API_BIND, params=self._bind_params(), data=body)

    async def _get_session_ids(self) -> None:
        params = {
            "CVER": PARAM_CVER,
            "RID": self._next_request_id(),
            "VER": PARAM_VER,
            "app": PARAM_APP,
            "device": PARAM_DEVICE,
            "id": PARAM_ID,
            "loungeIdToken": self.token.value if self.token else "",
            "name": self.name,
        }
        reply = await self._request(API_BIND, params=params)
        self.session_ids = extract_session_ids(reply)

    def _bind_params(self) -> dict[str, str]:
        if self.session_ids is None:
            raise MissingSessionIdsError()
        return {
            "CVER": PARAM_CVER,
            "RID": self._next_request_id(),
            "SID": self.session_ids.sid,
            "VER": PARAM_VER,
            "gsessionid": self.session_ids.gsessionid,
            "loungeIdToken": self.token.value if self.token else "",
        }

    def _next_request_id(self) -> str:
        self.request_id += 1
        return str(self.request_id)

    async def _request(
        self,
        url: str,
        params: dict[str, str] | None = None,
        data: dict[str, str] | None = None,
    ) -> str:
        headers = {"Origin": ORIGIN, "User-Agent": USER_AGENT}
        reply = await fetch(
            self._session,
            "POST",
            url,
            timeout=self._config.http_timeout,
            headers=headers,
            params=params,
            data=data,
            ok=(200,),
            log=self._logger,
        )
        return reply.text
