"""
Bounded operations and run deadlines.

Every pipeline stage and adapter tier goes through ``bounded``: the operation
is awaited for at most ``min(stage budget, remaining run budget)`` seconds and
cancelled when it loses the race.
"""

import asyncio
import time
from typing import Awaitable, Optional, TypeVar

from core.error_handling import PipelineTimeout

T = TypeVar("T")


class Deadline:
    """Monotonic wall-clock budget for one job run."""

    def __init__(self, seconds: float):
        self.total = seconds
        self._expires_at = time.monotonic() + seconds

    def remaining(self) -> float:
        return max(self._expires_at - time.monotonic(), 0.0)

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def budget_for(self, stage_seconds: float) -> float:
        """A stage never gets more than what is left of the run."""
        return min(stage_seconds, self.remaining())


async def bounded(
    operation: Awaitable[T],
    seconds: float,
    label: str,
    deadline: Optional[Deadline] = None,
) -> T:
    """
    Await operation under a timeout, raising PipelineTimeout on expiry.

    Args:
        operation: Coroutine or awaitable to run
        seconds: Stage budget in seconds
        label: Stage name used in the error message
        deadline: Optional run deadline further limiting the budget
    """
    budget = deadline.budget_for(seconds) if deadline else seconds
    if budget <= 0:
        if asyncio.iscoroutine(operation):
            operation.close()
        raise PipelineTimeout(f"No time left in the run budget for {label}", stage=label)
    try:
        return await asyncio.wait_for(operation, timeout=budget)
    except asyncio.TimeoutError:
        raise PipelineTimeout(f"{label} timed out after {budget:.0f}s", stage=label) from None
