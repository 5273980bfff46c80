"""Job life cycle: statuses, job types and legal transitions."""

from enum import Enum


class JobStatus(str, Enum):
    """Status of a job record."""

    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


class JobType(str, Enum):
    """Kind of artwork requested for a job."""

    STICKER = "sticker"
    IMAGE = "image"


TERMINAL_STATUSES = frozenset({JobStatus.DONE, JobStatus.ERROR})

# queued -> error covers quota and pre-check failures; nothing leaves a terminal state.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING, JobStatus.ERROR}),
    JobStatus.PROCESSING: frozenset({JobStatus.DONE, JobStatus.ERROR}),
    JobStatus.DONE: frozenset(),
    JobStatus.ERROR: frozenset(),
}


class InvalidTransitionError(ValueError):
    """Raised when a job is asked to move along an edge that does not exist."""

    def __init__(self, current: JobStatus, target: JobStatus):
        super().__init__(f"Illegal job transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


def is_terminal(status: JobStatus | str) -> bool:
    """Return True if the status admits no further transitions."""
    return JobStatus(status) in TERMINAL_STATUSES


def can_transition(current: JobStatus | str, target: JobStatus | str) -> bool:
    """Check whether ``current -> target`` is a legal transition."""
    return JobStatus(target) in ALLOWED_TRANSITIONS[JobStatus(current)]


def ensure_transition(current: JobStatus | str, target: JobStatus | str) -> JobStatus:
    """Validate a transition and return the target status.

    Raises:
        InvalidTransitionError: If the transition is not allowed.
    """
    current, target = JobStatus(current), JobStatus(target)
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)
    return target
