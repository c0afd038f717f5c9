"""
Job status state machine.

A normal run is PENDING -> RUNNING -> COMPLETED | FAILED. The remaining edges
exist for resubmission of a failed job, the explicit retry of a completed
analysis, and the operator escape hatch for jobs stuck before they started.
"""

from enum import Enum
from typing import Dict, FrozenSet

from core.error_handling import InvalidTransition


class JobStatus(Enum):
    """Lifecycle states of an analysis job."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RUNNING})

ALLOWED_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset({JobStatus.PENDING}),
    JobStatus.FAILED: frozenset({JobStatus.PENDING}),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def check_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise InvalidTransition unless current -> target is an allowed edge."""
    if not can_transition(current, target):
        raise InvalidTransition(current, target)


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_STATUSES
