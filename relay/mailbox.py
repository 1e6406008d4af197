"""
In-memory mailboxes for pending offers and ICE candidate queues.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Optional, Tuple

from . import RelayError

LOG = logging.getLogger(__name__)

Payload = Dict[str, Any]
MonotonicCallable = Callable[[], float]


class SessionLimitExceeded(RelayError):
    """Raised when a new session would push the store past ``max_sessions``."""


class Namespace(str, enum.Enum):
    VIEWER = "viewer"
    PUBLISHER = "publisher"


class Direction(str, enum.Enum):
    TO_PEER = "to_peer"
    TO_VIEWER = "to_viewer"


@dataclass
class SessionMailbox:
    """
    Per-session slots.  The offer slot holds at most one payload; each
    direction owns an independent FIFO of ICE candidates.
    """

    offer: Optional[Payload] = None
    to_peer: Deque[Payload] = field(default_factory=deque)
    to_viewer: Deque[Payload] = field(default_factory=deque)
    touched_at: float = 0.0

    def queue(self, direction: Direction) -> Deque[Payload]:
        if direction is Direction.TO_PEER:
            return self.to_peer
        return self.to_viewer

    def is_empty(self) -> bool:
        return self.offer is None and not self.to_peer and not self.to_viewer


@dataclass(frozen=True, slots=True)
class MailboxStats:
    sessions: int
    offers: int
    queued_candidates: int
    dropped_candidates: int

    def to_dict(self) -> dict:
        return {
            "sessions": int(self.sessions),
            "offers": int(self.offers),
            "queuedCandidates": int(self.queued_candidates),
            "droppedCandidates": int(self.dropped_candidates),
        }


class SessionMailboxStore:
    """
    Owns every session's offer slot and ICE queues.

    All mutations happen under a single lock, so the store may be shared by the
    event loop and worker threads alike.  Sessions are created lazily by the
    producing operations and discarded once they hold nothing.
    """

    def __init__(
        self,
        *,
        max_sessions: int = 1024,
        max_ice_queue: int = 256,
        monotonic: Optional[MonotonicCallable] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._sessions: Dict[Tuple[Namespace, str], SessionMailbox] = {}
        self.max_sessions = max(1, int(max_sessions))
        self.max_ice_queue = max(1, int(max_ice_queue))
        self._monotonic: MonotonicCallable = monotonic or time.monotonic
        self._dropped = 0

    # ------------------------------------------------------------------ helpers

    def _get_locked(self, namespace: Namespace, session_id: str) -> Optional[SessionMailbox]:
        return self._sessions.get((namespace, session_id))

    def _get_or_create_locked(self, namespace: Namespace, session_id: str) -> SessionMailbox:
        key = (namespace, session_id)
        mailbox = self._sessions.get(key)
        if mailbox is None:
            if len(self._sessions) >= self.max_sessions:
                raise SessionLimitExceeded(
                    f"session limit of {self.max_sessions} reached; rejecting '{session_id}'"
                )
            mailbox = SessionMailbox()
            self._sessions[key] = mailbox
        mailbox.touched_at = self._monotonic()
        return mailbox

    def _discard_if_empty_locked(self, namespace: Namespace, session_id: str) -> None:
        key = (namespace, session_id)
        mailbox = self._sessions.get(key)
        if mailbox is not None and mailbox.is_empty():
            del self._sessions[key]

    # ------------------------------------------------------------------ offers

    def put_offer(self, namespace: Namespace, session_id: str, offer: Payload) -> None:
        """Store ``offer``, replacing any unconsumed one."""

        with self._lock:
            mailbox = self._get_or_create_locked(namespace, session_id)
            if mailbox.offer is not None:
                LOG.debug("Overwriting unconsumed %s offer for session %s", namespace.value, session_id)
            mailbox.offer = offer

    def peek_offer(self, namespace: Namespace, session_id: str) -> Optional[Payload]:
        with self._lock:
            mailbox = self._get_locked(namespace, session_id)
            return mailbox.offer if mailbox is not None else None

    def take_offer(self, namespace: Namespace, session_id: str) -> Optional[Payload]:
        with self._lock:
            mailbox = self._get_locked(namespace, session_id)
            if mailbox is None:
                return None
            offer, mailbox.offer = mailbox.offer, None
            self._discard_if_empty_locked(namespace, session_id)
            return offer

    def clear_offer(
        self,
        namespace: Namespace,
        session_id: str,
        expected: Optional[Payload] = None,
    ) -> bool:
        """
        Remove the stored offer.  When ``expected`` is given the offer is only
        removed if it is that very object, so a newer submission survives.
        """

        with self._lock:
            mailbox = self._get_locked(namespace, session_id)
            if mailbox is None or mailbox.offer is None:
                return False
            if expected is not None and mailbox.offer is not expected:
                return False
            mailbox.offer = None
            self._discard_if_empty_locked(namespace, session_id)
            return True

    # ------------------------------------------------------------------ ICE

    def enqueue_ice(
        self,
        namespace: Namespace,
        session_id: str,
        direction: Direction,
        candidate: Payload,
    ) -> int:
        """
        Append ``candidate`` and return the resulting queue length.

        A full queue drops its oldest candidate to make room.
        """

        with self._lock:
            mailbox = self._get_or_create_locked(namespace, session_id)
            queue = mailbox.queue(direction)
            if len(queue) >= self.max_ice_queue:
                queue.popleft()
                self._dropped += 1
                LOG.warning(
                    "ICE queue for %s session %s (%s) is full; dropped oldest candidate",
                    namespace.value,
                    session_id,
                    direction.value,
                )
            queue.append(candidate)
            return len(queue)

    def dequeue_ice(
        self,
        namespace: Namespace,
        session_id: str,
        direction: Direction,
    ) -> Optional[Payload]:
        """Pop the oldest candidate, or ``None`` when the queue is empty."""

        with self._lock:
            mailbox = self._get_locked(namespace, session_id)
            if mailbox is None:
                return None
            queue = mailbox.queue(direction)
            if not queue:
                return None
            candidate = queue.popleft()
            self._discard_if_empty_locked(namespace, session_id)
            return candidate

    def queue_length(self, namespace: Namespace, session_id: str, direction: Direction) -> int:
        with self._lock:
            mailbox = self._get_locked(namespace, session_id)
            return len(mailbox.queue(direction)) if mailbox is not None else 0

    # ------------------------------------------------------------------ housekeeping

    def has_session(self, namespace: Namespace, session_id: str) -> bool:
        with self._lock:
            return (namespace, session_id) in self._sessions

    def prune(self, max_idle: float) -> int:
        """Drop sessions untouched for longer than ``max_idle`` seconds."""

        cutoff = self._monotonic() - max(0.0, float(max_idle))
        with self._lock:
            stale = [key for key, mailbox in self._sessions.items() if mailbox.touched_at < cutoff]
            for key in stale:
                del self._sessions[key]
        if stale:
            LOG.info("Pruned %d idle session(s)", len(stale))
        return len(stale)

    def stats(self) -> MailboxStats:
        with self._lock:
            offers = sum(1 for mailbox in self._sessions.values() if mailbox.offer is not None)
            queued = sum(
                len(mailbox.to_peer) + len(mailbox.to_viewer) for mailbox in self._sessions.values()
            )
            return MailboxStats(
                sessions=len(self._sessions),
                offers=offers,
                queued_candidates=queued,
                dropped_candidates=self._dropped,
            )
