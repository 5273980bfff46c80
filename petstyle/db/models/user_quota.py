"""Per-user daily quota record."""

from datetime import date

from sqlalchemy import Date, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class UserQuota(Base, TimestampMixin):
    """Daily usage counter for one user.

    ``used_today`` only counts when ``last_usage_date`` is the current
    processing date; a stale date means zero usage for today.
    """

    __tablename__ = "UserQuotas"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    role: Mapped[str] = mapped_column(
        String(20),
        default="user",
        nullable=False,
        comment="'user' or 'admin'",
    )
    daily_limit: Mapped[int] = mapped_column(
        Integer,
        default=5,
        nullable=False,
        comment="Jobs allowed per day, 0 means unlimited",
    )
    used_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_usage_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    version: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Compare-and-swap counter for quota updates",
    )
