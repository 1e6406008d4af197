"""
FastAPI surface for the signaling relay.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Annotated, Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Type, TypeVar

from fastapi import FastAPI, HTTPException, Path as PathParam, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from .. import RelayConfig, RelayError
from ..exchange import AnswerTimeout, PublisherNotAllowed, SignalingRelay
from ..longpoll import WaitAlreadyPending
from ..mailbox import SessionLimitExceeded
from ..peer.forward import PeerForwardError
from . import schemas

LOG = logging.getLogger(__name__)

T = TypeVar("T")

ERROR_STATUS: Dict[Type[RelayError], int] = {
    PublisherNotAllowed: 400,
    WaitAlreadyPending: 409,
    PeerForwardError: 502,
    SessionLimitExceeded: 503,
    AnswerTimeout: 504,
}

# Status sent when the client hung up before its long-poll finished.
CLIENT_CLOSED_REQUEST = 499

SessionId = Annotated[str, PathParam(min_length=1, max_length=256)]


def http_error(exc: RelayError) -> HTTPException:
    for exc_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, exc_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


async def _wait_for_disconnect(request: Request) -> None:
    while True:
        message = await request.receive()
        if message.get("type") == "http.disconnect":
            return


async def until_disconnected(request: Request, operation: Awaitable[T]) -> Optional[T]:
    """
    Run ``operation`` but cancel it if the client goes away first.

    Returns ``None`` when the client disconnected; the cancelled operation
    releases its pending wait on the way out.
    """

    task = asyncio.ensure_future(operation)
    watcher = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if not watcher.done():
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher

    if task.done():
        return task.result()

    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
    return None


def create_app(
    *,
    state: Optional[SignalingRelay] = None,
    config: Optional[RelayConfig] = None,
    lifespan: Optional[Callable[..., object]] = None,
) -> FastAPI:
    relay_config = config or (state.config if state is not None else RelayConfig())
    relay = state or SignalingRelay(relay_config)

    @contextlib.asynccontextmanager
    async def relay_lifespan(app_: FastAPI) -> AsyncIterator[None]:
        await relay.start()
        try:
            if lifespan is not None:
                async with lifespan(app_):
                    yield
            else:
                yield
        finally:
            await relay.stop()

    app = FastAPI(title="Signaling Relay API", lifespan=relay_lifespan)
    app.state.relay = relay
    app.add_middleware(
        CORSMiddleware,
        allow_origins=relay_config.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.get("/health", response_model=schemas.HealthModel)
    async def health() -> dict:
        return relay.health()

    @app.get("/stats", response_model=schemas.StatsModel)
    async def stats() -> dict:
        return relay.stats()

    # ------------------------------------------------------------------ viewer

    @app.post("/offer/{session_id}")
    async def submit_offer(
        request: Request,
        payload: schemas.OfferModel,
        session_id: SessionId,
    ) -> Any:
        try:
            answer = await until_disconnected(request, relay.submit_offer(session_id, payload.to_payload()))
        except RelayError as exc:
            raise http_error(exc) from exc
        if answer is None:
            LOG.info("Viewer for session %s disconnected before an answer arrived", session_id)
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        return answer

    @app.post("/ice-candidate/{session_id}", response_model=schemas.StatusModel)
    async def add_viewer_ice(
        payload: schemas.IceCandidateModel,
        session_id: SessionId,
    ) -> dict:
        try:
            return relay.add_viewer_ice(session_id, payload.to_payload())
        except RelayError as exc:
            raise http_error(exc) from exc

    @app.get("/ice-candidate/{session_id}")
    async def next_peer_ice(session_id: SessionId) -> Optional[dict]:
        return relay.next_peer_ice(session_id)

    # ------------------------------------------------------------------ media peer

    @app.get("/backend/wait-offer/{session_id}")
    async def wait_offer(request: Request, session_id: SessionId) -> Any:
        try:
            offer = await until_disconnected(request, relay.wait_offer(session_id))
        except RelayError as exc:
            raise http_error(exc) from exc
        return offer

    @app.post("/backend/answer/{session_id}", response_model=schemas.StatusModel)
    async def post_answer(payload: schemas.AnswerModel, session_id: SessionId) -> dict:
        return relay.post_answer(session_id, payload.to_payload())

    @app.get("/backend/wait-ice/{session_id}")
    async def next_viewer_ice(session_id: SessionId) -> Optional[dict]:
        return relay.next_viewer_ice(session_id)

    @app.post("/backend/ice-candidate/{session_id}", response_model=schemas.StatusModel)
    async def add_peer_ice(
        payload: schemas.IceCandidateModel,
        session_id: SessionId,
    ) -> dict:
        try:
            return relay.add_peer_ice(session_id, payload.to_payload())
        except RelayError as exc:
            raise http_error(exc) from exc

    # ------------------------------------------------------------------ publisher

    @app.post("/publish/offer/{session_id}")
    async def publish_offer(payload: schemas.OfferModel, session_id: SessionId) -> Any:
        try:
            return await relay.publish_offer(session_id, payload.to_payload())
        except RelayError as exc:
            raise http_error(exc) from exc

    @app.post("/publish/ice-candidate/{session_id}")
    async def publish_ice(payload: schemas.IceCandidateModel, session_id: SessionId) -> Any:
        try:
            return await relay.publish_ice(session_id, payload.to_payload())
        except RelayError as exc:
            raise http_error(exc) from exc

    @app.get("/backend/publish/wait-offer/{session_id}")
    async def publisher_wait_offer(session_id: SessionId) -> Optional[dict]:
        try:
            return relay.publisher_take_offer(session_id)
        except RelayError as exc:
            raise http_error(exc) from exc

    @app.get("/backend/publish/wait-ice/{session_id}")
    async def publisher_wait_ice(session_id: SessionId) -> Optional[dict]:
        try:
            return relay.publisher_next_ice(session_id)
        except RelayError as exc:
            raise http_error(exc) from exc

    return app
