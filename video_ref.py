"""
Turn whatever the user typed (video id, query string, watch/share/embed URL) into a video id
and an optional start time, and read the screen id out of DIAL additionalData.
"""
from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from urllib.parse import parse_qs

import xmltodict
from xml.parsers.expat import ExpatError

from cast_errors import InvalidResponseError


# https://webapps.stackexchange.com/a/101153
VIDEO_ID_RE = re.compile(r"^[0-9A-Za-z_-]{10}[048AEIMQUYcgkosw]$")
_DURATION_RE = re.compile(r"^(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$")


@dataclass(frozen=True)
class VideoRef:
    video_id: str
    start_time: int = 0  # seconds


def extract_video_info(ref: str) -> VideoRef:
    """
    Extract the video id and start time from a video reference. It's not very smart:
    URLs are read as query strings, "v" wins, else the last path segment if it looks like an id.
    Unrecognized references are returned unchanged with no start time.
    """
    ref = ref.strip()
    as_query = ref.replace("?", "&").replace("#", "&")
    query = parse_qs(as_query, keep_blank_values=True)
    video_id = _extract_video_id(as_query, query)
    if not video_id:
        return VideoRef(ref)
    return VideoRef(video_id, extract_start_time(query.get("t", [""])[0]))


def _extract_video_id(value: str, query: dict[str, list[str]]) -> str:
    ids = [v for v in query.get("v", []) if v]
    if ids:
        return ids[0]
    # strip "invalid" parameters glued to the path, e.g. https://youtu.be/jNQXAC9IVRw&feature=channel
    base = posixpath.basename(value).split("&", 1)[0]
    # no guarantee on the id format, so the pattern is only used without a "v" parameter
    if VIDEO_ID_RE.match(base):
        return base
    return ""


def extract_start_time(value: str) -> int:
    """Seconds from "110", "110s", "1m50s" or "1h14m33s". Negative or garbage gives 0."""
    value = value.strip()
    if not value:
        return 0
    if value[-1].isdigit():
        value += "s"
    m = _DURATION_RE.match(value)
    if not m or not any(m.groups()):
        return 0
    h, m_, s = (int(g) if g else 0 for g in m.groups())
    return h * 3600 + m_ * 60 + s


def extract_screen_id(additional_data: str) -> str:
    """
    Read <screenId> out of the inner XML of a DIAL <additionalData> element.
    The fragment has no root element of its own, so a dummy one is added.
    Returns "" when there is no screenId.
    """
    try:
        doc = xmltodict.parse(f"<dummy>{additional_data}</dummy>")
    except ExpatError as e:
        raise InvalidResponseError(f"additionalData: {e}") from e
    root = doc.get("dummy") or {}
    screen_id = root.get("screenId") if isinstance(root, dict) else None
    if isinstance(screen_id, list):
        screen_id = screen_id[0]
    if isinstance(screen_id, dict):
        screen_id = screen_id.get("#text")
    return (screen_id or "").strip()
