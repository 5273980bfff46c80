"""Failure taxonomy for job processing.

Every failure that reaches a job record is reduced to one of a small,
closed set of error codes. Typed exceptions raised by the gateways carry
their code directly; anything else is matched on well-known message
markers, and whatever is left over falls into ``JOB_PROCESSING_ERROR``.
"""

import json
from enum import Enum


class ErrorCode(str, Enum):
    """User-facing error codes written to failed jobs."""

    OPENAI_API_KEY_MISSING = "OPENAI_API_KEY_MISSING"
    INPUT_NOT_FOUND = "INPUT_NOT_FOUND"
    BUCKET_NOT_CONFIGURED = "BUCKET_NOT_CONFIGURED"
    LIMIT_REACHED = "LIMIT_REACHED"
    LIMIT_CHECK_FAILED = "LIMIT_CHECK_FAILED"
    JOB_PROCESSING_ERROR = "JOB_PROCESSING_ERROR"


class PipelineError(Exception):
    """Base class for failures raised inside the job pipeline."""

    error_code: ErrorCode | None = None


def normalize_error_message(error: object) -> str:
    """Render any raised object as a human-readable message."""
    if isinstance(error, BaseException):
        message = str(error)
        return message or type(error).__name__
    if isinstance(error, str):
        return error
    try:
        return json.dumps(error, default=str)
    except (TypeError, ValueError):
        return repr(error)


def classify_error(error: object) -> ErrorCode:
    """Map a failure to an error code.

    Args:
        error: The exception (or any other raised value) to classify.

    Returns:
        The matching ``ErrorCode``; ``JOB_PROCESSING_ERROR`` when nothing matches.
    """
    code = getattr(error, "error_code", None)
    if isinstance(code, ErrorCode):
        return code

    message = normalize_error_message(error)
    lowered = message.lower()

    if "OPENAI_API_KEY" in message:
        return ErrorCode.OPENAI_API_KEY_MISSING
    if "No such object" in message or "not found" in message:
        return ErrorCode.INPUT_NOT_FOUND
    if "storage bucket name not configured" in lowered:
        return ErrorCode.BUCKET_NOT_CONFIGURED
    return ErrorCode.JOB_PROCESSING_ERROR
