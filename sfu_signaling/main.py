"""
Command line entrypoint.

Connects to a channel with the aiortc engine, logs lifecycle events and a
packet count per inbound track, and disconnects on SIGINT/SIGTERM or once the
session ends on its own.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from collections import Counter
from dataclasses import replace
from typing import Any, Optional

from .connection import Connection
from .options import ConnectionOptions, load_profile, parse_role, video_codec_by_name
from .utils.logging import configure_logging

LOG = logging.getLogger(__name__)

PACKET_LOG_EVERY = 500


def build_options(args: argparse.Namespace) -> ConnectionOptions:
    options = load_profile(
        args.profile,
        signaling_url=args.url,
        channel_id=args.channel_id,
        role=parse_role(args.role).value if args.role else None,
        trickle_ice=True if args.trickle_ice else None,
        multistream=True if args.multistream else None,
        audio=False if args.no_audio else None,
        debug=True if args.verbose else None,
    )
    if args.video_codec:
        video = replace(options.video, codec_type=video_codec_by_name(args.video_codec))
        options = replace(options, video=video)
    if args.signaling_key:
        options = replace(options, metadata={**options.metadata, "signaling_key": args.signaling_key})
    return options


async def serve(options: ConnectionOptions) -> None:
    """
    Run one session until it ends or a termination signal arrives.
    """

    connection = Connection(options)
    packets: Counter = Counter()
    finished = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _on_open(engine: Any) -> None:
        LOG.info("Peer engine created")

    def _on_connect() -> None:
        LOG.info(
            "Connected (connection_id=%s, client_id=%s)",
            connection.connection_id,
            connection.client_id,
        )

    def _on_track(track: Any) -> None:
        LOG.info("Track %s (%s) started", track.id, track.kind)

    def _on_track_packet(track: Any, packet: Any) -> None:
        packets[track.id] += 1
        if packets[track.id] % PACKET_LOG_EVERY == 0:
            LOG.info("Track %s: %d packets", track.id, packets[track.id])

    def _on_notify(event_type: str, message: Any) -> None:
        LOG.info("Notify: %s", event_type)

    def _on_push(payload: dict) -> None:
        LOG.info("Push: %s", payload.get("data"))

    def _on_disconnect(reason: str, error: Optional[BaseException]) -> None:
        if error is not None:
            LOG.warning("Disconnected (%s): %s", reason, error)
        else:
            LOG.info("Disconnected (%s)", reason)
        finished.set()

    connection.on_open(_on_open)
    connection.on_connect(_on_connect)
    connection.on_track(_on_track)
    connection.on_track_packet(_on_track_packet)
    connection.on_notify(_on_notify)
    connection.on_push(_on_push)
    connection.on_disconnect(_on_disconnect)

    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, disconnecting...", signum)
        loop.call_soon_threadsafe(finished.set)

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)

    await connection.connect()
    await finished.wait()
    await connection.disconnect()

    for track_id, count in sorted(packets.items()):
        LOG.info("Track %s: %d packets received", track_id, count)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="SFU signaling client")
    parser.add_argument("--url", required=True, help="signaling WebSocket URL (wss://...)")
    parser.add_argument("--channel-id", required=True, help="channel to join")
    parser.add_argument("--profile", default="default", help="connection profile to load")
    parser.add_argument("--video-codec", default=None, help="VP8, VP9, H264 or AV1")
    parser.add_argument("--signaling-key", default=None, help="signaling key sent in metadata")
    parser.add_argument("--role", default=None, help="sendonly, recvonly or sendrecv")
    parser.add_argument("--no-audio", action="store_true", help="do not negotiate audio")
    parser.add_argument("--multistream", action="store_true", help="request multistream")
    parser.add_argument("--trickle-ice", action="store_true", help="exchange ICE candidates")
    parser.add_argument("--verbose", action="store_true", help="log protocol traces")
    return parser.parse_args(argv)


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    try:
        options = build_options(args)
    except ValueError as exc:
        LOG.error("Invalid options: %s", exc)
        raise SystemExit(2) from exc

    try:
        asyncio.run(serve(options))
    except KeyboardInterrupt:
        LOG.info("Client interrupted by user.")


if __name__ == "__main__":
    run()
