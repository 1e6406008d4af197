"""
Relay process entrypoint.

Resolves the configuration profile, initialises logging and runs the FastAPI
application under uvicorn until SIGINT/SIGTERM.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from . import ConfigError, RelayConfig
from .api.server import create_app
from .exchange import SignalingRelay
from .utils.logging import configure_logging

LOG = logging.getLogger(__name__)


async def serve(config: RelayConfig) -> None:
    """
    Run the relay API inside an asyncio loop.

    Parameters
    ----------
    config:
        Resolved relay configuration, including the bind address.
    """

    import uvicorn

    configure_logging(config.log_level)
    relay = SignalingRelay(config)

    @asynccontextmanager
    async def app_lifespan(_app) -> AsyncIterator[None]:
        LOG.info(
            "Signaling relay listening on %s:%s (profile=%s, publishers=%s)",
            config.host,
            config.port,
            config.profile,
            ",".join(config.publisher_ids) or "-",
        )
        if config.peer_url:
            LOG.info("Peer fallback: %s", config.peer_url)
        try:
            yield
        finally:
            LOG.info("Signaling relay shutting down")

    app = create_app(state=relay, config=config, lifespan=app_lifespan)
    server_config = uvicorn.Config(
        app=app,
        host=config.host,
        port=config.port,
        log_config=None,
        log_level=config.log_level.lower(),
        reload=False,
    )
    server = uvicorn.Server(config=server_config)

    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, shutting down server...", signum)
        server.should_exit = True

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)

    await server.serve()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="WebRTC signaling relay")
    parser.add_argument("--profile", default="default", help="relay profile to load")
    parser.add_argument("--config", type=Path, default=None, help="path to a profiles YAML file")
    parser.add_argument("--host", default=None, help="override the bind host")
    parser.add_argument("--port", type=int, default=None, help="override the bind port")
    parser.add_argument("--peer-url", default=None, help="media peer URL used as answer fallback")
    parser.add_argument("--log-level", default=None, help="override the log level")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> RelayConfig:
    config = RelayConfig.load(args.profile, path=args.config)
    if args.host:
        config.host = args.host
    if args.port is not None:
        config.port = int(args.port)
    if args.peer_url:
        config.peer_url = str(args.peer_url).rstrip("/")
    if args.log_level:
        config.log_level = str(args.log_level).upper()
    return config


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    try:
        config = build_config(args)
    except ConfigError as exc:
        raise SystemExit(f"error: {exc}") from exc

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        LOG.info("Relay interrupted by user.")


if __name__ == "__main__":
    run()
