"""Job processing pipeline.

The orchestrator lives in ``petstyle.pipeline.orchestrator`` and is imported
from there; this module only re-exports the dependency-free building blocks.
"""

from .errors import ErrorCode, PipelineError, classify_error, normalize_error_message
from .state import (
    InvalidTransitionError,
    JobStatus,
    JobType,
    can_transition,
    ensure_transition,
    is_terminal,
)

__all__ = [
    "ErrorCode",
    "InvalidTransitionError",
    "JobStatus",
    "JobType",
    "PipelineError",
    "can_transition",
    "classify_error",
    "ensure_transition",
    "is_terminal",
    "normalize_error_message",
]
