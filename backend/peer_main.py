"""
Headless peer. Connects to the rendezvous server and either opens a room or
answers someone else's.

    python peer_main.py --alias alice --offer
    python peer_main.py --alias bob --answer alice
"""

import argparse
import asyncio
import logging

from config import DEFAULT_ALIAS, HANDSHAKE_TIMEOUT, LOG_LEVEL, SIGNALLING_URL
from peering.channel import SignallingChannel, SignallingError
from peering.controller import ClientController

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def wait_for_alias(controller: ClientController, alias: str, timeout: float):
    """Wait until a directory entry with ``alias`` shows up."""
    found = asyncio.get_running_loop().create_future()

    def check(entries):
        entry = next((e for e in entries if e.alias == alias and e.id != controller.id), None)
        if entry is not None and not found.done():
            found.set_result(entry)

    controller.on_directory(check)
    check(controller.directory)
    return await asyncio.wait_for(found, timeout=timeout)


async def run_peer(args) -> int:
    controller = ClientController(
        SignallingChannel(args.url),
        alias=args.alias,
        handshake_timeout=args.timeout,
    )
    controller.on_stream(
        lambda adapter, stream: logger.info(f"Remote stream ready: {stream!r} via {adapter!r}")
    )

    if args.media and not controller.start_media(args.media, args.media_format):
        logger.warning("Continuing without local media")

    try:
        await controller.connect()
    except SignallingError as e:
        logger.error(str(e))
        return 1

    try:
        if args.clear:
            await controller.clear_rooms()

        if args.offer:
            adapter = await controller.create_room()
        elif args.answer:
            try:
                entry = await wait_for_alias(controller, args.answer, args.timeout)
            except asyncio.TimeoutError:
                logger.error(f"No room named {args.answer!r} appeared")
                return 1
            adapter = await controller.connect_to(entry.id)
        else:
            adapter = None

        if adapter is not None:
            done = asyncio.Event()
            adapter.on_failure(lambda reason: done.set())
            if adapter.terminal:
                done.set()
            logger.info(f"Status: {controller.status.value}; press Ctrl+C to leave")
            await done.wait()
            logger.error(f"Attempt failed: {adapter.failure_reason}; try again")
            return 1

        await asyncio.Event().wait()
    finally:
        await controller.disconnect()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Rendezvous peer")
    parser.add_argument("--url", default=SIGNALLING_URL, help="Signalling WebSocket URL")
    parser.add_argument("--alias", default=DEFAULT_ALIAS)
    role = parser.add_mutually_exclusive_group()
    role.add_argument("--offer", action="store_true", help="Create a room")
    role.add_argument("--answer", metavar="ALIAS", help="Connect to the room with this alias")
    parser.add_argument("--clear", action="store_true", help="Clear all rooms first")
    parser.add_argument("--media", help="Local media source (device or file)")
    parser.add_argument("--media-format", help="FFmpeg input format, e.g. v4l2")
    parser.add_argument("--timeout", type=float, default=HANDSHAKE_TIMEOUT, help="seconds")
    args = parser.parse_args()
    try:
        raise SystemExit(asyncio.run(run_peer(args)))
    except KeyboardInterrupt:
        pass
