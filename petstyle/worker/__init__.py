"""Queue worker module."""

from .base_worker import BaseWorker, WorkerResult, WorkerStatus, requeue_delay, run_worker

__all__ = [
    "BaseWorker",
    "WorkerResult",
    "WorkerStatus",
    "requeue_delay",
    "run_worker",
]
