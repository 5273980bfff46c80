"""Database module: connection, models and job persistence."""

from .connection import (
    DatabaseConnection,
    create_engine,
    create_session_factory,
    get_database_url,
    get_db,
    to_async_url,
)
from .job_service import (
    JobStateConflictError,
    complete_job,
    create_job,
    get_generation_for_job,
    get_job,
    mark_job_failed,
    mark_job_processing,
    transition_job,
)
from .models import (
    Base,
    Generation,
    Job,
    TimestampMixin,
    UserQuota,
    generate_id,
    utcnow,
)

__all__ = [
    "Base",
    "DatabaseConnection",
    "Generation",
    "Job",
    "JobStateConflictError",
    "TimestampMixin",
    "UserQuota",
    "complete_job",
    "create_engine",
    "create_job",
    "create_session_factory",
    "generate_id",
    "get_database_url",
    "get_db",
    "get_generation_for_job",
    "get_job",
    "mark_job_failed",
    "mark_job_processing",
    "to_async_url",
    "transition_job",
    "utcnow",
]
