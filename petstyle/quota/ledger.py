"""Per-user daily quota ledger.

``consume`` and ``refund`` are read-modify-write operations on a single
``UserQuota`` row. Three layers keep them atomic:

* a per-user ``asyncio.Lock`` serializes callers inside one process,
* the row is read ``FOR UPDATE`` on databases that support row locks,
* the write is a compare-and-swap on ``version``; a lost race (or a
  duplicate lazy insert) is retried from a fresh read.

Day rollover is not a separate reset step: a row whose ``last_usage_date``
is not today simply has an effective usage of zero.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from petstyle.db.connection import DatabaseConnection, get_db
from petstyle.db.models import UserQuota, utcnow
from petstyle.logging.config import get_logger
from petstyle.pipeline.errors import ErrorCode, PipelineError

logger = get_logger(__name__)


class QuotaError(PipelineError):
    """Base class for quota ledger failures."""


class LimitExceededError(QuotaError):
    """The user has used up today's budget."""

    error_code = ErrorCode.LIMIT_REACHED

    def __init__(self, user_id: str, daily_limit: int):
        super().__init__("User limit exceeded")
        self.user_id = user_id
        self.daily_limit = daily_limit


class QuotaCheckError(QuotaError):
    """The quota could not be checked for an infrastructural reason."""

    error_code = ErrorCode.LIMIT_CHECK_FAILED


class QuotaConflictError(QuotaError):
    """Another writer changed the quota row between our read and write."""


def utc_today() -> date:
    """Current processing date (UTC)."""
    return datetime.now(timezone.utc).date()


def effective_used(record: UserQuota, today: date) -> int:
    """Usage that counts against today's budget."""
    if record.last_usage_date != today:
        return 0
    return max(record.used_today or 0, 0)


@dataclass(frozen=True)
class QuotaSnapshot:
    """Read-only view of a user's quota for today."""

    user_id: str
    daily_limit: int
    used_today: int
    last_usage_date: date | None

    @property
    def is_unlimited(self) -> bool:
        return self.daily_limit == 0

    @property
    def remaining(self) -> int | None:
        """Jobs left today, or None when unlimited."""
        if self.is_unlimited:
            return None
        return max(self.daily_limit - self.used_today, 0)

    @property
    def is_limit_reached(self) -> bool:
        return not self.is_unlimited and self.used_today >= self.daily_limit


_retry_on_conflict = retry(
    retry=retry_if_exception_type((QuotaConflictError, IntegrityError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
    reraise=True,
)


class QuotaLedger:
    """Atomic per-user daily usage counter."""

    def __init__(
        self,
        db: DatabaseConnection | None = None,
        default_daily_limit: int | None = None,
        clock: Callable[[], date] = utc_today,
    ):
        """Initialize the ledger.

        Args:
            db: Database connection; defaults to the global one.
            default_daily_limit: Limit given to lazily created records.
                Defaults to ``QUOTA_DEFAULT_DAILY_LIMIT``.
            clock: Returns the current processing date.
        """
        if default_daily_limit is None:
            from petstyle.config import get_settings

            default_daily_limit = get_settings().quota.default_daily_limit
        self._db = db
        self._default_daily_limit = default_daily_limit
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def db(self) -> DatabaseConnection:
        if self._db is None:
            self._db = get_db()
        return self._db

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    async def consume(self, user_id: str) -> QuotaSnapshot:
        """Take one unit of today's budget.

        Returns:
            The quota after consumption.

        Raises:
            LimitExceededError: If the user is at their daily limit. Nothing
                is written in that case.
            QuotaCheckError: If the ledger could not be read or written.
        """
        async with self._lock_for(user_id):
            try:
                snapshot = await self._consume(user_id)
            except LimitExceededError:
                logger.info("Daily limit reached", user_id=user_id)
                raise
            except Exception as e:
                raise QuotaCheckError(f"Failed to consume quota for user {user_id}: {e}") from e

        logger.info(
            "Consumed quota",
            user_id=user_id,
            used_today=snapshot.used_today,
            daily_limit=snapshot.daily_limit,
        )
        return snapshot

    async def refund(self, user_id: str) -> bool:
        """Give back one unit of today's budget.

        A refund never touches another day's counter and never drives the
        counter below zero.

        Returns:
            True if a unit was restored, False if there was nothing to refund.
        """
        async with self._lock_for(user_id):
            refunded = await self._refund(user_id)

        logger.info("Refund processed", user_id=user_id, refunded=refunded)
        return refunded

    async def get_usage(self, user_id: str) -> QuotaSnapshot:
        """Current quota state without modifying it."""
        today = self._clock()
        async with self.db.session() as session:
            result = await session.execute(
                select(UserQuota).where(UserQuota.user_id == user_id)
            )
            record = result.scalar_one_or_none()

        if record is None:
            return QuotaSnapshot(user_id, self._default_daily_limit, 0, None)
        return QuotaSnapshot(
            user_id=user_id,
            daily_limit=record.daily_limit,
            used_today=effective_used(record, today),
            last_usage_date=record.last_usage_date,
        )

    async def ensure_user_quota(self, user_id: str, email: str = "") -> bool:
        """Provision the default quota record for a new user.

        Returns:
            True if a record was created, False if one already existed.
        """
        async with self._lock_for(user_id):
            try:
                async with self.db.session() as session:
                    if await self._load(session, user_id) is not None:
                        return False
                    session.add(self._new_record(user_id, email))
                    await session.flush()
            except IntegrityError:
                # Created concurrently by another process
                return False

        logger.info("Created user quota", user_id=user_id)
        return True

    def _new_record(self, user_id: str, email: str = "") -> UserQuota:
        return UserQuota(
            user_id=user_id,
            email=email,
            role="user",
            daily_limit=self._default_daily_limit,
            used_today=0,
            last_usage_date=None,
            version=0,
        )

    async def _load(
        self,
        session: AsyncSession,
        user_id: str,
        for_update: bool = False,
    ) -> UserQuota | None:
        stmt = select(UserQuota).where(UserQuota.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def _swap(
        self,
        session: AsyncSession,
        record: UserQuota,
        used_today: int,
        last_usage_date: date,
    ) -> None:
        result = await session.execute(
            update(UserQuota)
            .where(
                UserQuota.user_id == record.user_id,
                UserQuota.version == record.version,
            )
            .values(
                used_today=used_today,
                last_usage_date=last_usage_date,
                version=record.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise QuotaConflictError(f"Quota for user {record.user_id} changed concurrently")

    @_retry_on_conflict
    async def _consume(self, user_id: str) -> QuotaSnapshot:
        today = self._clock()
        async with self.db.session() as session:
            record = await self._load(session, user_id, for_update=True)
            if record is None:
                record = self._new_record(user_id)
                session.add(record)
                await session.flush()

            used = effective_used(record, today)
            if record.daily_limit > 0 and used >= record.daily_limit:
                raise LimitExceededError(user_id, record.daily_limit)

            await self._swap(session, record, used + 1, today)

        return QuotaSnapshot(user_id, record.daily_limit, used + 1, today)

    @_retry_on_conflict
    async def _refund(self, user_id: str) -> bool:
        today = self._clock()
        async with self.db.session() as session:
            record = await self._load(session, user_id, for_update=True)
            if record is None:
                return False
            if record.last_usage_date != today:
                return False
            if record.used_today <= 0:
                return False

            await self._swap(session, record, record.used_today - 1, today)
        return True
