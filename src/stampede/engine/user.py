"""A single virtual user: claim, request, record, pace, repeat."""

from __future__ import annotations

import asyncio
import contextlib
from enum import Enum, auto
from typing import TYPE_CHECKING

from stampede._internal.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from stampede.engine.budget import IterationBudget
    from stampede.engine.executor import Executor
    from stampede.metrics.models import RequestOutcome

logger = get_logger("engine.user")


class UserState(Enum):
    """Lifecycle of a virtual user."""

    IDLE = auto()
    RUNNING = auto()
    PACED_WAIT = auto()
    STOPPED = auto()


class StopReason(Enum):
    """Why a virtual user reached STOPPED."""

    BUDGET_EXHAUSTED = auto()
    CANCELLED = auto()


class VirtualUser:
    """Drives one simulated client.

    State machine: IDLE -> RUNNING -> (PACED_WAIT -> RUNNING)* -> STOPPED

    Cancellation is cooperative. ``cancel`` never interrupts a request in
    flight: the user finishes it, records the outcome, and stops at the
    next iteration boundary. A user sitting in PACED_WAIT wakes up
    immediately when cancelled.

    Attributes:
        user_id: Identity, unique within a run.
        iterations: Iterations completed so far.
    """

    def __init__(
        self,
        user_id: int,
        executor: Executor,
        endpoint: str,
        sink: Callable[[RequestOutcome], None],
        *,
        pacing: float = 0.0,
        budget: IterationBudget | None = None,
    ) -> None:
        """Initialize the user.

        Args:
            user_id: Identity, unique within a run.
            executor: Performs each iteration's request.
            endpoint: Target URL.
            sink: Receives every outcome (the collector's ``record``).
            pacing: Seconds to wait between iterations; 0 repeats
                immediately after yielding to the event loop.
            budget: Shared iteration budget (fixed mode). None means run
                until cancelled.
        """
        self.user_id = user_id
        self.iterations = 0
        self._executor = executor
        self._endpoint = endpoint
        self._sink = sink
        self._pacing = pacing
        self._budget = budget
        self._state = UserState.IDLE
        self._stop_reason: StopReason | None = None
        self._cancel_event = asyncio.Event()

    @property
    def state(self) -> UserState:
        return self._state

    @property
    def stop_reason(self) -> StopReason | None:
        return self._stop_reason

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Ask the user to stop at its next iteration boundary."""
        self._cancel_event.set()

    async def run(self) -> None:
        """Loop until the budget runs out or the user is cancelled."""
        try:
            while not self.cancelled:
                if self._budget is not None and not self._budget.claim():
                    self._stop_reason = StopReason.BUDGET_EXHAUSTED
                    break

                self._state = UserState.RUNNING
                outcome = await self._executor.execute(
                    self._endpoint, user_id=self.user_id, iteration=self.iterations
                )
                self._sink(outcome)
                self.iterations += 1

                if self.cancelled:
                    break
                await self._pace()
        finally:
            if self._stop_reason is None:
                self._stop_reason = StopReason.CANCELLED
            self._state = UserState.STOPPED
            logger.debug(
                "User %d stopped after %d iterations (%s)",
                self.user_id,
                self.iterations,
                self._stop_reason.name.lower(),
            )

    async def _pace(self) -> None:
        if self._pacing <= 0:
            # Still yield so a zero-latency executor cannot starve other users.
            await asyncio.sleep(0)
            return
        self._state = UserState.PACED_WAIT
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._cancel_event.wait(), timeout=self._pacing)
