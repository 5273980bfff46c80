"""SQLAlchemy database models for the pet style service."""

from .base import Base, TimestampMixin, generate_id, utcnow
from .generation import Generation
from .job import Job
from .user_quota import UserQuota

__all__ = [
    "Base",
    "Generation",
    "Job",
    "TimestampMixin",
    "UserQuota",
    "generate_id",
    "utcnow",
]
