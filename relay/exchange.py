"""
Offer/answer exchange and ICE shuttling built on the mailbox store and the
long-poll coordinator.

Per viewer session the exchange cycles EMPTY -> OFFER_PENDING -> ANSWERED ->
EMPTY.  Offers are stored and can be pulled at any time until answered;
answers are only ever handed to a live viewer wait and are dropped otherwise.
ICE candidates flow through independent FIFO queues and never block.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from typing import Optional

from . import RelayConfig, RelayError
from .longpoll import DuplicateWaitPolicy, LongPollCoordinator, Slot, SlotKey
from .mailbox import Direction, Namespace, Payload, SessionLimitExceeded, SessionMailboxStore
from .peer.forward import PeerForwarder

LOG = logging.getLogger(__name__)


class PublisherNotAllowed(RelayError):
    """Raised for publisher endpoints addressed with an id outside the allow-list."""


class AnswerTimeout(RelayError):
    """Raised when a viewer's offer got no answer within the wait window."""


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SignalingRelay:
    """
    Request-level operations of the relay.

    One instance is built at startup and shared by every request handler; it
    owns the store and coordinator so both can be swapped in tests.
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        *,
        store: Optional[SessionMailboxStore] = None,
        coordinator: Optional[LongPollCoordinator] = None,
        forwarder: Optional[PeerForwarder] = None,
    ) -> None:
        self.config = config or RelayConfig()
        self.store = store or SessionMailboxStore(
            max_sessions=self.config.max_sessions,
            max_ice_queue=self.config.max_ice_queue,
        )
        self.coordinator = coordinator or LongPollCoordinator(
            policy=DuplicateWaitPolicy(self.config.duplicate_wait_policy)
        )
        if forwarder is None and self.config.peer_url:
            forwarder = PeerForwarder(self.config.peer_url, timeout=self.config.peer_timeout)
        self.forwarder = forwarder
        self._prune_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ lifecycle

    async def start(self) -> None:
        if self._prune_task is not None:
            return
        if self.config.prune_interval > 0 and self.config.session_ttl > 0:
            self._prune_task = asyncio.create_task(self._prune_loop())

    async def stop(self) -> None:
        task, self._prune_task = self._prune_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        expired = self.coordinator.close()
        if expired:
            LOG.info("Expired %d pending wait(s) on shutdown", expired)

    async def _prune_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.config.prune_interval)
                self.store.prune(self.config.session_ttl)
        except asyncio.CancelledError:
            raise
        except Exception:  # pragma: no cover - defensive
            LOG.exception("Session prune loop failed.")

    # ------------------------------------------------------------------ helpers

    def _check_publisher(self, session_id: str) -> None:
        if not self.config.is_publisher(session_id):
            allowed = ", ".join(self.config.publisher_ids) or "nobody"
            raise PublisherNotAllowed(f"'{session_id}' may not publish (allowed: {allowed})")

    # ------------------------------------------------------------------ viewer side

    async def submit_offer(self, session_id: str, offer: Payload) -> Payload:
        """
        Store the viewer's offer and park until the media peer answers.

        On timeout the offer is withdrawn (unless a newer one replaced it) and,
        when a peer URL is configured, forwarded to the peer directly.
        """

        LOG.info("Received offer for session %s", session_id)
        answer_key = SlotKey(Namespace.VIEWER, session_id, Slot.ANSWER)
        waiter = self.coordinator.register(answer_key, self.config.answer_timeout)
        try:
            self.store.put_offer(Namespace.VIEWER, session_id, offer)
        except SessionLimitExceeded:
            self.coordinator.discard(waiter)
            LOG.warning("Rejected offer for session %s: session limit reached", session_id)
            raise

        if self.coordinator.resolve(SlotKey(Namespace.VIEWER, session_id, Slot.OFFER), offer):
            LOG.info("Released waiting media peer for session %s", session_id)

        try:
            outcome = await waiter
        except asyncio.CancelledError:
            self.store.clear_offer(Namespace.VIEWER, session_id, expected=offer)
            LOG.info("Viewer for session %s went away; offer withdrawn", session_id)
            raise
        if outcome.delivered:
            LOG.info("Got backend answer for session %s", session_id)
            return outcome.value

        self.store.clear_offer(Namespace.VIEWER, session_id, expected=offer)
        if self.forwarder is None:
            LOG.warning("Backend answer timeout for session %s", session_id)
            raise AnswerTimeout(f"timeout waiting for backend answer for '{session_id}'")

        LOG.warning("Backend answer timeout for session %s, forwarding to peer", session_id)
        return await self.forwarder.forward_offer(session_id, offer)

    def add_viewer_ice(self, session_id: str, candidate: Payload) -> Payload:
        LOG.info("Received ICE candidate for session %s", session_id)
        self.store.enqueue_ice(Namespace.VIEWER, session_id, Direction.TO_PEER, candidate)
        return {"status": "queued"}

    def next_peer_ice(self, session_id: str) -> Optional[Payload]:
        return self.store.dequeue_ice(Namespace.VIEWER, session_id, Direction.TO_VIEWER)

    # ------------------------------------------------------------------ media peer side

    async def wait_offer(self, session_id: str) -> Optional[Payload]:
        """
        Long-poll for the session's offer.  The offer stays stored after the
        pull; only the answer (or the viewer giving up) clears it.
        """

        outcome = await self.coordinator.wait_for(
            SlotKey(Namespace.VIEWER, session_id, Slot.OFFER),
            self.config.offer_timeout,
            fetch=lambda: self.store.peek_offer(Namespace.VIEWER, session_id),
        )
        return outcome.value

    def post_answer(self, session_id: str, answer: Payload) -> Payload:
        delivered = self.coordinator.resolve(SlotKey(Namespace.VIEWER, session_id, Slot.ANSWER), answer)
        if delivered:
            LOG.info("Delivered answer for session %s", session_id)
        else:
            LOG.info("No viewer waiting on session %s; answer dropped", session_id)
        self.store.clear_offer(Namespace.VIEWER, session_id)
        return {"status": "ok"}

    def next_viewer_ice(self, session_id: str) -> Optional[Payload]:
        return self.store.dequeue_ice(Namespace.VIEWER, session_id, Direction.TO_PEER)

    def add_peer_ice(self, session_id: str, candidate: Payload) -> Payload:
        LOG.info("Received backend ICE candidate for session %s", session_id)
        self.store.enqueue_ice(Namespace.VIEWER, session_id, Direction.TO_VIEWER, candidate)
        return {"status": "queued"}

    # ------------------------------------------------------------------ publisher namespace

    async def publish_offer(self, session_id: str, offer: Payload) -> Payload:
        self._check_publisher(session_id)
        LOG.info("Received publisher offer for %s", session_id)
        self.store.put_offer(Namespace.PUBLISHER, session_id, offer)
        if self.forwarder is not None:
            return await self.forwarder.forward_offer(session_id, offer)
        return {"status": "queued"}

    async def publish_ice(self, session_id: str, candidate: Payload) -> Payload:
        self._check_publisher(session_id)
        LOG.info("Received publisher ICE candidate for %s", session_id)
        self.store.enqueue_ice(Namespace.PUBLISHER, session_id, Direction.TO_PEER, candidate)
        if self.forwarder is not None:
            return await self.forwarder.forward_ice(session_id, candidate)
        return {"status": "queued"}

    def publisher_take_offer(self, session_id: str) -> Optional[Payload]:
        self._check_publisher(session_id)
        return self.store.take_offer(Namespace.PUBLISHER, session_id)

    def publisher_next_ice(self, session_id: str) -> Optional[Payload]:
        self._check_publisher(session_id)
        return self.store.dequeue_ice(Namespace.PUBLISHER, session_id, Direction.TO_PEER)

    # ------------------------------------------------------------------ diagnostics

    def health(self) -> Payload:
        return {"status": "ok", "timestamp": utc_timestamp()}

    def stats(self) -> Payload:
        payload = self.store.stats().to_dict()
        payload["pendingWaits"] = self.coordinator.pending_count()
        return payload
