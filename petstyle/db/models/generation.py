"""Generation SQLAlchemy model."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, generate_id, utcnow


class Generation(Base):
    """Persisted result of a successfully completed job."""

    __tablename__ = "Generations"

    generation_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=generate_id,
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    job_id: Mapped[str] = mapped_column(String(64), nullable=False)
    input_ref: Mapped[str] = mapped_column(String(500), nullable=False)
    output_ref: Mapped[str] = mapped_column(String(500), nullable=False)
    job_type: Mapped[str] = mapped_column(String(20), nullable=False)
    style: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_favorite: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("job_id", name="uq_generations_job"),
        Index("ix_generations_user_created", "user_id", "created_at"),
    )
