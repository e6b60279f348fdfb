#!/usr/bin/env python3
"""
Cast YouTube videos to a smart TV: discover DIAL devices, pick one, launch the YouTube app
and play the videos given on the command line, or read from stdin one per line.
Run: python main.py [video ...]   or   python main.py - < videos.txt
"""
import asyncio
import logging
import os
import sys

import aiohttp

from cast_config import CastConfig
from cast_errors import CastError, LaunchFailedError, UnknownAppStateError
from dial_client import DialClient, Device
from lounge_remote import DIAL_APP_NAME, ORIGIN, Remote
from video_ref import extract_screen_id

PROG_NAME = "tvcast"
SEARCH_TIMEOUT = 3  # seconds
LAUNCH_TIMEOUT = 60.0
LAUNCH_CHECK_INTERVAL = 2.0

logger = logging.getLogger(PROG_NAME)


def prompt(text: str, default: str = "") -> str:
    """Read a line from stdin."""
    if default:
        sys.stdout.write(f"{text} [{default}]: ")
    else:
        sys.stdout.write(f"{text}: ")
    sys.stdout.flush()
    line = sys.stdin.readline()
    if not line:
        raise EOFError(f"no input for {text!r}")
    return line.strip() or default


def prompt_int(text: str, min_val: int, max_val: int) -> int:
    """Read an integer in range from stdin."""
    while True:
        raw = prompt(text)
        try:
            n = int(raw)
            if min_val <= n <= max_val:
                return n
        except ValueError:
            pass
        print(f"Enter a number between {min_val} and {max_val}")


def read_videos(args: list[str]) -> list[str]:
    """Videos from the command line, else one per line from stdin (also with a lone "-")."""
    if args and args != ["-"]:
        return [v for v in args if v.strip()]
    if sys.stdin.isatty():
        print("Enter videos, one URL or id per line, then Ctrl-D:")
    logger.info("reading videos from stdin")
    return [line.strip() for line in sys.stdin if line.strip()]


def match_device(devices: list[Device], name: str) -> Device | None:
    """First device matching a substring of friendly name, then host, then unique service name."""
    name = name.strip().lower()
    for field in ("friendly_name", "host", "unique_service_name"):
        for dev in devices:
            if name in getattr(dev, field).lower():
                return dev
    return None


def select_device(devices: list[Device], name: str = "") -> Device | None:
    if name:
        return match_device(devices, name)
    print(f"\nFound {len(devices)} device(s):")
    for i, dev in enumerate(devices, 1):
        print(f"  {i}. {dev.friendly_name}  ({dev.host})")
    idx = prompt_int("Select device", 1, len(devices))
    return devices[idx - 1]


async def launch_youtube_app(
    client: DialClient,
    device: Device,
    timeout: float = LAUNCH_TIMEOUT,
    check_interval: float = LAUNCH_CHECK_INTERVAL,
) -> str:
    """Launch the YouTube app if needed and wait for its screen id."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        app = await client.get_app_info(device, DIAL_APP_NAME, ORIGIN)
        logger.info(f"{DIAL_APP_NAME!r} is {app.state} on {device.friendly_name!r}")
        if app.state == "running":
            screen_id = extract_screen_id(app.additional_data)
            if screen_id:
                return screen_id
            logger.info("screenId not available")
        elif app.state in ("stopped", "hidden"):
            logger.info(f"launching {DIAL_APP_NAME!r} on {device.friendly_name!r}")
            await client.launch(device, DIAL_APP_NAME, ORIGIN)
        else:
            raise UnknownAppStateError(DIAL_APP_NAME, app.state)

        if loop.time() + check_interval > deadline:
            break
        await asyncio.sleep(check_interval)
    raise LaunchFailedError(
        f"{device.friendly_name!r}: unable to launch {DIAL_APP_NAME!r} and get screenId"
    )


async def cast(session: aiohttp.ClientSession, config: CastConfig, videos: list[str]) -> None:
    client = DialClient(session, config)

    print("Discovering DIAL devices...")
    devices = await client.async_discover(timeout=SEARCH_TIMEOUT)
    if not devices:
        print("No device found. Check WiFi and try again.")
        sys.exit(1)

    device = select_device(devices, os.environ.get("TVCAST_DEVICE", ""))
    if device is None:
        print("No device matches.")
        sys.exit(1)
    print(f"Using: {device.friendly_name}\n")

    if not await client.ping(device):
        print(f"{device.friendly_name} is not awake, trying waking it up...")
        device = await client.try_wakeup(device)

    screen_id = await launch_youtube_app(client, device)
    logger.info(f"connecting to {device.friendly_name!r} via YouTube Lounge")
    remote = await Remote.connect(session, screen_id, PROG_NAME, config)
    logger.info(f"requesting YouTube Lounge to play {videos} on {device.friendly_name!r}")
    await remote.play(videos)
    print("Playing.")


async def main() -> None:
    logging.basicConfig(
        level=logging.DEBUG if os.environ.get("TVCAST_VERBOSE") else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    videos = read_videos(sys.argv[1:])
    if not videos:
        print("Nothing to play.")
        sys.exit(0)

    config = CastConfig.from_env()
    try:
        async with aiohttp.ClientSession() as session:
            await cast(session, config, videos)
    except CastError as e:
        logger.debug("cast failed", exc_info=True)
        print(f"{PROG_NAME}: {e}")
        sys.exit(1)
    except EOFError:
        print(f"{PROG_NAME}: no device selected, set TVCAST_DEVICE when videos come from stdin")
        sys.exit(1)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
