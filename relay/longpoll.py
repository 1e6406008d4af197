"""
Bounded-wait rendezvous between long-polling consumers and producers.

A consumer that finds nothing to take registers a :class:`Waiter` for a
:class:`SlotKey`.  The waiter owns a future and a deadline timer on the event
loop; a producer resolving the slot cancels the timer, and the timer expiring
withdraws the waiter.  Both paths run on the loop thread and check the future
first, so a waiter settles exactly once.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set

from . import RelayError
from .mailbox import Namespace, Payload

LOG = logging.getLogger(__name__)


class WaitAlreadyPending(RelayError):
    """Raised under the ``reject`` policy when a slot already has a waiter."""


class Slot(str, enum.Enum):
    OFFER = "offer"
    ANSWER = "answer"


class DuplicateWaitPolicy(str, enum.Enum):
    """
    What happens when a second consumer waits on a slot that already has one.

    ``REPLACE``: the newest waiter takes the slot; the earlier one keeps its
    own deadline and resolves with no data when it expires.
    ``REJECT``: the second request fails immediately with
    :class:`WaitAlreadyPending`.
    """

    REPLACE = "replace"
    REJECT = "reject"


class WaiterState(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class SlotKey:
    namespace: Namespace
    session_id: str
    slot: Slot

    def __str__(self) -> str:
        return f"{self.namespace.value}:{self.session_id}:{self.slot.value}"


@dataclass(frozen=True, slots=True)
class WaitOutcome:
    """Result of a wait.  A timeout is a normal outcome, not an error."""

    value: Optional[Payload]
    timed_out: bool = False

    @property
    def delivered(self) -> bool:
        return not self.timed_out


class Waiter:
    """One-shot pending wait for a single slot."""

    def __init__(
        self,
        coordinator: "LongPollCoordinator",
        key: SlotKey,
        loop: asyncio.AbstractEventLoop,
        timeout: float,
    ) -> None:
        self.coordinator = coordinator
        self.key = key
        self.timeout = max(0.0, float(timeout))
        self.registered_at = loop.time()
        self.deadline = self.registered_at + self.timeout
        self.state = WaiterState.PENDING
        self._future: asyncio.Future[WaitOutcome] = loop.create_future()
        self._timer: asyncio.TimerHandle = loop.call_at(self.deadline, coordinator._expire, self)

    @property
    def done(self) -> bool:
        return self._future.done()

    def _settle(self, outcome: WaitOutcome, state: WaiterState) -> bool:
        if self._future.done():
            return False
        self._timer.cancel()
        self.state = state
        self._future.set_result(outcome)
        return True

    async def wait(self) -> WaitOutcome:
        try:
            return await self._future
        except asyncio.CancelledError:
            self.coordinator.discard(self)
            raise

    def __await__(self):
        return self.wait().__await__()


class LongPollCoordinator:
    """
    Registry of pending waits keyed by :class:`SlotKey`.

    Must only be used from the event loop thread that owns the waits.
    """

    def __init__(self, policy: DuplicateWaitPolicy = DuplicateWaitPolicy.REPLACE) -> None:
        self.policy = DuplicateWaitPolicy(policy)
        self._waiters: Dict[SlotKey, Waiter] = {}
        self._armed: Set[Waiter] = set()

    # ------------------------------------------------------------------ internals

    def _withdraw(self, waiter: Waiter) -> None:
        self._armed.discard(waiter)
        if self._waiters.get(waiter.key) is waiter:
            del self._waiters[waiter.key]

    def _expire(self, waiter: Waiter) -> None:
        self._withdraw(waiter)
        if waiter._settle(WaitOutcome(value=None, timed_out=True), WaiterState.EXPIRED):
            LOG.debug("Wait on %s expired after %.1fs", waiter.key, waiter.timeout)

    # ------------------------------------------------------------------ public API

    def register(self, key: SlotKey, timeout: float) -> Waiter:
        """Arm a waiter for ``key`` that expires ``timeout`` seconds from now."""

        loop = asyncio.get_running_loop()
        existing = self._waiters.get(key)
        if existing is not None and not existing.done:
            if self.policy is DuplicateWaitPolicy.REJECT:
                raise WaitAlreadyPending(f"a wait is already pending on {key}")
            LOG.warning("Replacing pending wait on %s; earlier caller will time out", key)

        waiter = Waiter(self, key, loop, timeout)
        self._waiters[key] = waiter
        self._armed.add(waiter)
        LOG.debug("Registered wait on %s (timeout %.1fs)", key, waiter.timeout)
        return waiter

    async def wait_for(
        self,
        key: SlotKey,
        timeout: float,
        fetch: Optional[Callable[[], Optional[Any]]] = None,
    ) -> WaitOutcome:
        """
        Return data for ``key`` as soon as it is available.

        ``fetch`` is consulted first; if it yields a value the call returns
        without registering anything.  Otherwise the caller is parked until a
        producer resolves the slot or ``timeout`` elapses.
        """

        if fetch is not None:
            value = fetch()
            if value is not None:
                return WaitOutcome(value=value)
        return await self.register(key, timeout)

    def resolve(self, key: SlotKey, value: Payload) -> bool:
        """
        Hand ``value`` to the waiter currently registered on ``key``.

        Returns ``False`` when there is no live waiter; the value is not kept.
        """

        waiter = self._waiters.get(key)
        if waiter is None:
            return False
        self._withdraw(waiter)
        delivered = waiter._settle(WaitOutcome(value=value), WaiterState.RESOLVED)
        if not delivered:
            # Only a cancelled waiter can still be registered here.
            LOG.debug("Wait on %s was cancelled before delivery; value dropped", key)
        return delivered

    def discard(self, waiter: Waiter) -> None:
        """Release ``waiter`` early, e.g. because its client went away."""

        self._withdraw(waiter)
        waiter._timer.cancel()
        if not waiter.done:
            waiter._future.cancel()
        if waiter.state is WaiterState.PENDING:
            waiter.state = WaiterState.CANCELLED
            LOG.debug("Released wait on %s before its deadline", waiter.key)

    def has_waiter(self, key: SlotKey) -> bool:
        return key in self._waiters

    def pending_count(self) -> int:
        """Number of armed waiters, including ones superseded on their slot."""

        return len(self._armed)

    def close(self) -> int:
        """Expire every armed waiter immediately.  Returns how many were expired."""

        armed = list(self._armed)
        for waiter in armed:
            self._expire(waiter)
        return len(armed)
