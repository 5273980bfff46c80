"""Job SQLAlchemy model."""

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, generate_id


class Job(Base, TimestampMixin):
    """A request to stylize one uploaded pet photo."""

    __tablename__ = "Jobs"

    job_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=generate_id,
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    job_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="'sticker' or 'image'",
    )
    input_ref: Mapped[str] = mapped_column(String(500), nullable=False)
    style: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default="queued",
        nullable=False,
    )
    error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_ref: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="generation_id of the produced Generation",
    )
    correlation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_jobs_user", "user_id"),
        Index("ix_jobs_status", "status"),
        Index("ix_jobs_created", "created_at"),
    )
