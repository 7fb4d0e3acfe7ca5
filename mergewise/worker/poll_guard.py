"""Guard that keeps poll cycles from overlapping."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable


@dataclass
class PollCycleState:
    is_poll_in_flight: bool = False


async def run_poll_cycle_with_in_flight_guard(
    state: PollCycleState,
    poll_cycle: Callable[[], Awaitable[None]],
) -> bool:
    """Run ``poll_cycle`` unless another cycle is in flight.

    Returns ``True`` when the cycle ran and ``False`` when it was skipped. The
    in-flight flag is released even when the cycle raises.
    """

    if state.is_poll_in_flight:
        return False

    state.is_poll_in_flight = True
    try:
        await poll_cycle()
        return True
    finally:
        state.is_poll_in_flight = False
