"""Quick demo of the media-peer side of the relay.

This utility long-polls the relay for offers exactly like a real media peer
would, and answers each one with a canned SDP so the viewer flow can be checked
end-to-end without a WebRTC stack.

Examples
--------
Serve one session against a locally running relay::

    python scripts/demo_media_peer.py --session cam1

Point at another relay and stop after a minute::

    python scripts/demo_media_peer.py --url http://192.168.1.10:3001 \
        --session cam1 --duration 60

Press Ctrl+C to stop polling.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from typing import Iterable

from relay.peer.client import MediaPeerClient
from relay.utils.logging import configure_logging

LOG = logging.getLogger("demo_media_peer")

STUB_ANSWER_SDP = "v=0\r\no=- 0 0 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\n"


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Signaling relay media-peer demo")
    parser.add_argument("--url", default="http://127.0.0.1:3001", help="relay base URL")
    parser.add_argument("--session", default="cam1", help="session id to serve")
    parser.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="Optional duration in seconds; 0 means run until interrupted.",
    )
    return parser.parse_args(list(argv) if argv is not None else None)


async def drain_ice(client: MediaPeerClient, session_id: str) -> int:
    drained = 0
    while True:
        candidate = await client.wait_ice(session_id)
        if candidate is None:
            return drained
        drained += 1
        LOG.info("Viewer ICE for %s: %s", session_id, candidate.get("candidate"))


async def serve_session(url: str, session_id: str, duration: float) -> None:
    start_time = time.monotonic()
    async with MediaPeerClient(url) as client:
        health = await client.health()
        LOG.info("Relay healthy at %s", health.get("timestamp"))
        while duration <= 0 or time.monotonic() - start_time < duration:
            offer = await client.wait_offer(session_id)
            if offer is None:
                LOG.info("No offer for %s yet; polling again", session_id)
                continue
            LOG.info("Got offer for %s (%d bytes of SDP)", session_id, len(offer.get("sdp", "")))
            await client.post_answer(session_id, {"sdp": STUB_ANSWER_SDP, "type": "answer"})
            await drain_ice(client, session_id)


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging()
    try:
        asyncio.run(serve_session(args.url, args.session, args.duration))
    except KeyboardInterrupt:
        LOG.info("Stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
