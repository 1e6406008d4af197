"""Tests covering offer slots and ICE queues of the mailbox store."""

from __future__ import annotations

import pytest

from relay.mailbox import Direction, Namespace, SessionLimitExceeded, SessionMailboxStore

VIEWER = Namespace.VIEWER
PUBLISHER = Namespace.PUBLISHER


class FakeClock:
    def __init__(self) -> None:
        self.value = 100.0

    def now(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


def test_put_then_peek_returns_offer() -> None:
    store = SessionMailboxStore()
    offer = {"sdp": "v=0", "type": "offer"}

    store.put_offer(VIEWER, "cam1", offer)

    assert store.peek_offer(VIEWER, "cam1") == offer
    # peeking does not consume
    assert store.peek_offer(VIEWER, "cam1") == offer


def test_offer_is_last_write_wins() -> None:
    store = SessionMailboxStore()
    store.put_offer(VIEWER, "cam1", {"sdp": "first", "type": "offer"})
    store.put_offer(VIEWER, "cam1", {"sdp": "second", "type": "offer"})

    assert store.peek_offer(VIEWER, "cam1") == {"sdp": "second", "type": "offer"}


def test_take_offer_consumes_it() -> None:
    store = SessionMailboxStore()
    store.put_offer(PUBLISHER, "cam3", {"sdp": "pub", "type": "offer"})

    assert store.take_offer(PUBLISHER, "cam3") == {"sdp": "pub", "type": "offer"}
    assert store.take_offer(PUBLISHER, "cam3") is None
    assert not store.has_session(PUBLISHER, "cam3")


def test_namespaces_are_disjoint() -> None:
    store = SessionMailboxStore()
    store.put_offer(VIEWER, "cam3", {"sdp": "viewer", "type": "offer"})

    assert store.peek_offer(PUBLISHER, "cam3") is None
    assert store.dequeue_ice(PUBLISHER, "cam3", Direction.TO_PEER) is None


def test_clear_offer_respects_expected_identity() -> None:
    store = SessionMailboxStore()
    stale = {"sdp": "old", "type": "offer"}
    fresh = {"sdp": "old", "type": "offer"}
    store.put_offer(VIEWER, "cam1", stale)
    store.put_offer(VIEWER, "cam1", fresh)

    # equal but not the same object: the newer submission survives
    assert store.clear_offer(VIEWER, "cam1", expected=stale) is False
    assert store.peek_offer(VIEWER, "cam1") is fresh

    assert store.clear_offer(VIEWER, "cam1", expected=fresh) is True
    assert store.peek_offer(VIEWER, "cam1") is None
    assert store.clear_offer(VIEWER, "cam1") is False


def test_ice_queue_is_fifo() -> None:
    store = SessionMailboxStore()
    for name in ("A", "B", "C"):
        store.enqueue_ice(VIEWER, "cam1", Direction.TO_PEER, {"candidate": name})

    drained = [store.dequeue_ice(VIEWER, "cam1", Direction.TO_PEER) for _ in range(3)]

    assert drained == [{"candidate": "A"}, {"candidate": "B"}, {"candidate": "C"}]
    assert store.dequeue_ice(VIEWER, "cam1", Direction.TO_PEER) is None


def test_ice_queue_keeps_duplicates() -> None:
    store = SessionMailboxStore()
    candidate = {"candidate": "dup"}
    store.enqueue_ice(VIEWER, "cam1", Direction.TO_PEER, candidate)
    store.enqueue_ice(VIEWER, "cam1", Direction.TO_PEER, candidate)

    assert store.queue_length(VIEWER, "cam1", Direction.TO_PEER) == 2


def test_directions_are_independent() -> None:
    store = SessionMailboxStore()
    store.enqueue_ice(VIEWER, "cam1", Direction.TO_PEER, {"candidate": "from-viewer"})
    store.enqueue_ice(VIEWER, "cam1", Direction.TO_VIEWER, {"candidate": "from-peer"})

    assert store.dequeue_ice(VIEWER, "cam1", Direction.TO_VIEWER) == {"candidate": "from-peer"}
    assert store.dequeue_ice(VIEWER, "cam1", Direction.TO_VIEWER) is None
    assert store.dequeue_ice(VIEWER, "cam1", Direction.TO_PEER) == {"candidate": "from-viewer"}


def test_offer_and_ice_do_not_clear_each_other() -> None:
    store = SessionMailboxStore()
    store.put_offer(VIEWER, "cam1", {"sdp": "x", "type": "offer"})
    store.enqueue_ice(VIEWER, "cam1", Direction.TO_PEER, {"candidate": "a"})

    store.clear_offer(VIEWER, "cam1")

    assert store.has_session(VIEWER, "cam1")
    assert store.dequeue_ice(VIEWER, "cam1", Direction.TO_PEER) == {"candidate": "a"}
    assert not store.has_session(VIEWER, "cam1")


def test_full_queue_drops_oldest() -> None:
    store = SessionMailboxStore(max_ice_queue=2)
    for name in ("A", "B", "C"):
        store.enqueue_ice(VIEWER, "cam1", Direction.TO_PEER, {"candidate": name})

    assert store.dequeue_ice(VIEWER, "cam1", Direction.TO_PEER) == {"candidate": "B"}
    assert store.dequeue_ice(VIEWER, "cam1", Direction.TO_PEER) == {"candidate": "C"}
    assert store.stats().dropped_candidates == 1


def test_session_limit_rejects_new_sessions_only() -> None:
    store = SessionMailboxStore(max_sessions=1)
    store.put_offer(VIEWER, "cam1", {"sdp": "x", "type": "offer"})

    with pytest.raises(SessionLimitExceeded):
        store.put_offer(VIEWER, "cam2", {"sdp": "y", "type": "offer"})
    with pytest.raises(SessionLimitExceeded):
        store.enqueue_ice(VIEWER, "cam2", Direction.TO_PEER, {"candidate": "a"})

    # the existing session keeps working
    store.enqueue_ice(VIEWER, "cam1", Direction.TO_PEER, {"candidate": "a"})
    assert store.stats().sessions == 1


def test_prune_drops_idle_sessions() -> None:
    clock = FakeClock()
    store = SessionMailboxStore(monotonic=clock.now)
    store.put_offer(VIEWER, "old", {"sdp": "x", "type": "offer"})
    clock.advance(60)
    store.enqueue_ice(VIEWER, "fresh", Direction.TO_PEER, {"candidate": "a"})
    clock.advance(10)

    assert store.prune(30) == 1
    assert not store.has_session(VIEWER, "old")
    assert store.has_session(VIEWER, "fresh")


def test_stats_snapshot() -> None:
    store = SessionMailboxStore()
    store.put_offer(VIEWER, "cam1", {"sdp": "x", "type": "offer"})
    store.enqueue_ice(VIEWER, "cam1", Direction.TO_PEER, {"candidate": "a"})
    store.enqueue_ice(PUBLISHER, "cam3", Direction.TO_PEER, {"candidate": "b"})

    stats = store.stats().to_dict()

    assert stats == {
        "sessions": 2,
        "offers": 1,
        "queuedCandidates": 2,
        "droppedCandidates": 0,
    }
