"""Tests for the per-user daily quota ledger."""

import asyncio
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select, update
from tenacity import stop_after_attempt

from petstyle.db.models import UserQuota
from petstyle.quota.ledger import (
    LimitExceededError,
    QuotaCheckError,
    QuotaLedger,
    QuotaSnapshot,
)

from conftest import TODAY


async def set_quota(db, user_id, **values):
    async with db.session() as session:
        await session.execute(update(UserQuota).where(UserQuota.user_id == user_id).values(**values))


async def load_quota(db, user_id) -> UserQuota:
    async with db.session() as session:
        result = await session.execute(select(UserQuota).where(UserQuota.user_id == user_id))
        return result.scalar_one()


# =============================================================================
# Consume
# =============================================================================


class TestConsume:
    """Tests for QuotaLedger.consume."""

    @pytest.mark.asyncio
    async def test_first_consume_creates_default_record(self, db, ledger):
        """A user with no record gets the default limit and one unit used."""
        snapshot = await ledger.consume("user-1")

        assert snapshot.used_today == 1
        assert snapshot.daily_limit == 5
        assert snapshot.last_usage_date == TODAY

        record = await load_quota(db, "user-1")
        assert record.used_today == 1
        assert record.last_usage_date == TODAY
        assert record.role == "user"

    @pytest.mark.asyncio
    async def test_consume_increments(self, ledger):
        """Each consume takes exactly one unit."""
        for expected in range(1, 4):
            snapshot = await ledger.consume("user-1")
            assert snapshot.used_today == expected

    @pytest.mark.asyncio
    async def test_consume_at_limit_raises_without_writing(self, db, ledger):
        """At the limit consume raises LimitExceededError and changes nothing."""
        for _ in range(5):
            await ledger.consume("user-1")
        before = await load_quota(db, "user-1")

        with pytest.raises(LimitExceededError) as exc_info:
            await ledger.consume("user-1")

        assert exc_info.value.daily_limit == 5
        assert str(exc_info.value) == "User limit exceeded"
        after = await load_quota(db, "user-1")
        assert after.used_today == 5
        assert after.version == before.version

    @pytest.mark.asyncio
    async def test_new_day_resets_usage(self, db, ledger, clock):
        """Yesterday's usage does not count; the first consume today yields 1."""
        for _ in range(5):
            await ledger.consume("user-1")

        clock.today = TODAY + timedelta(days=1)
        snapshot = await ledger.consume("user-1")

        assert snapshot.used_today == 1
        record = await load_quota(db, "user-1")
        assert record.used_today == 1
        assert record.last_usage_date == clock.today

    @pytest.mark.asyncio
    async def test_zero_limit_is_unlimited(self, db, ledger):
        """A daily limit of 0 never blocks."""
        await ledger.ensure_user_quota("admin-1")
        await set_quota(db, "admin-1", daily_limit=0)

        for _ in range(10):
            snapshot = await ledger.consume("admin-1")

        assert snapshot.used_today == 10
        assert snapshot.is_unlimited

    @pytest.mark.asyncio
    async def test_concurrent_consumes_never_exceed_limit(self, db, ledger):
        """N concurrent consumes against limit L succeed exactly min(N, L) times."""
        results = await asyncio.gather(
            *(ledger.consume("user-1") for _ in range(8)),
            return_exceptions=True,
        )

        succeeded = [r for r in results if isinstance(r, QuotaSnapshot)]
        rejected = [r for r in results if isinstance(r, LimitExceededError)]
        assert len(succeeded) == 5
        assert len(rejected) == 3
        assert sorted(s.used_today for s in succeeded) == [1, 2, 3, 4, 5]

        record = await load_quota(db, "user-1")
        assert record.used_today == 5

    @pytest.mark.asyncio
    async def test_concurrent_consumes_below_limit_all_succeed(self, ledger):
        """When N < L every consume succeeds."""
        results = await asyncio.gather(*(ledger.consume("user-1") for _ in range(3)))

        assert sorted(s.used_today for s in results) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_infrastructure_failure_raises_quota_check_error(self, clock):
        """Storage failures surface as QuotaCheckError, not LimitExceededError."""
        from unittest.mock import MagicMock

        broken_db = MagicMock()
        broken_db.session.side_effect = RuntimeError("connection refused")
        ledger = QuotaLedger(db=broken_db, default_daily_limit=5, clock=clock)

        with pytest.raises(QuotaCheckError, match="connection refused"):
            await ledger.consume("user-1")


# =============================================================================
# Contention between ledgers
# =============================================================================


class ContendedLedger(QuotaLedger):
    """Ledger whose row is rewritten by another writer after each locked read."""

    def __init__(self, *args, interferences: int = 1, **kwargs):
        super().__init__(*args, **kwargs)
        self.interferences = interferences
        self.locked_reads = 0

    async def _load(self, session, user_id, for_update=False):
        record = await super()._load(session, user_id, for_update=for_update)
        if for_update and record is not None:
            self.locked_reads += 1
            if self.locked_reads <= self.interferences:
                async with self.db.session() as other:
                    await other.execute(
                        update(UserQuota)
                        .where(UserQuota.user_id == user_id)
                        .values(version=UserQuota.version + 1)
                    )
        return record


class TestContention:
    """Tests for the version compare-and-swap between independent ledgers."""

    @pytest.mark.asyncio
    async def test_two_ledgers_never_exceed_limit(self, db, clock):
        """Ledgers that share only the database still admit exactly L consumes."""
        ledger_a = QuotaLedger(db=db, default_daily_limit=5, clock=clock)
        ledger_b = QuotaLedger(db=db, default_daily_limit=5, clock=clock)
        await ledger_a.ensure_user_quota("user-1")

        # Leave room for repeated conflicts between the two ledgers
        with patch.object(QuotaLedger._consume.retry, "stop", stop_after_attempt(10)):
            results = await asyncio.gather(
                *(
                    (ledger_a if i % 2 else ledger_b).consume("user-1")
                    for i in range(8)
                ),
                return_exceptions=True,
            )

        succeeded = [r for r in results if isinstance(r, QuotaSnapshot)]
        rejected = [r for r in results if isinstance(r, LimitExceededError)]
        assert len(succeeded) == 5
        assert len(rejected) == 3
        assert sorted(s.used_today for s in succeeded) == [1, 2, 3, 4, 5]

        record = await load_quota(db, "user-1")
        assert record.used_today == 5
        assert record.version == 5

    @pytest.mark.asyncio
    async def test_stale_version_is_retried_from_fresh_read(self, db, clock):
        """A write lost to another writer is redone against the new row."""
        ledger = ContendedLedger(db=db, default_daily_limit=5, clock=clock, interferences=1)
        await ledger.ensure_user_quota("user-1")

        snapshot = await ledger.consume("user-1")

        assert snapshot.used_today == 1
        assert ledger.locked_reads == 2
        record = await load_quota(db, "user-1")
        assert record.used_today == 1
        # One bump from the other writer, one from the consume
        assert record.version == 2

    @pytest.mark.asyncio
    async def test_exhausted_conflict_retries_raise_quota_check_error(self, db, clock):
        """A row that keeps changing surfaces as QuotaCheckError and consumes nothing."""
        ledger = ContendedLedger(db=db, default_daily_limit=5, clock=clock, interferences=100)
        await ledger.ensure_user_quota("user-1")

        with pytest.raises(QuotaCheckError, match="changed concurrently"):
            await ledger.consume("user-1")

        assert ledger.locked_reads == 3
        record = await load_quota(db, "user-1")
        assert record.used_today == 0
        assert record.last_usage_date is None


# =============================================================================
# Refund
# =============================================================================


class TestRefund:
    """Tests for QuotaLedger.refund."""

    @pytest.mark.asyncio
    async def test_refund_restores_one_unit(self, db, ledger):
        """A refund the same day gives back exactly one unit."""
        await ledger.consume("user-1")
        await ledger.consume("user-1")

        assert await ledger.refund("user-1") is True

        record = await load_quota(db, "user-1")
        assert record.used_today == 1

    @pytest.mark.asyncio
    async def test_refund_without_record_is_noop(self, db, ledger):
        """Refunding a user with no record creates nothing."""
        assert await ledger.refund("ghost") is False

        async with db.session() as session:
            result = await session.execute(select(UserQuota).where(UserQuota.user_id == "ghost"))
            assert result.scalar_one_or_none() is None

    @pytest.mark.asyncio
    async def test_refund_never_goes_negative(self, db, ledger):
        """A refund at zero usage leaves the counter at zero."""
        await ledger.consume("user-1")
        assert await ledger.refund("user-1") is True
        assert await ledger.refund("user-1") is False

        record = await load_quota(db, "user-1")
        assert record.used_today == 0

    @pytest.mark.asyncio
    async def test_refund_does_not_touch_previous_day(self, db, ledger, clock):
        """Usage recorded yesterday is not refunded today."""
        await ledger.consume("user-1")
        clock.today = TODAY + timedelta(days=1)

        assert await ledger.refund("user-1") is False

        record = await load_quota(db, "user-1")
        assert record.used_today == 1
        assert record.last_usage_date == TODAY

    @pytest.mark.asyncio
    async def test_refund_frees_slot_at_limit(self, ledger):
        """After a refund at the limit, the next consume succeeds."""
        for _ in range(5):
            await ledger.consume("user-1")
        await ledger.refund("user-1")

        snapshot = await ledger.consume("user-1")

        assert snapshot.used_today == 5


# =============================================================================
# Usage and provisioning
# =============================================================================


class TestUsage:
    """Tests for get_usage and ensure_user_quota."""

    @pytest.mark.asyncio
    async def test_usage_for_unknown_user(self, ledger):
        """Unknown users report the default limit and no usage."""
        snapshot = await ledger.get_usage("nobody")

        assert snapshot.used_today == 0
        assert snapshot.daily_limit == 5
        assert snapshot.remaining == 5
        assert not snapshot.is_limit_reached

    @pytest.mark.asyncio
    async def test_usage_ignores_stale_date(self, ledger, clock):
        """Usage from a previous day reads as zero."""
        await ledger.consume("user-1")
        clock.today = TODAY + timedelta(days=1)

        snapshot = await ledger.get_usage("user-1")

        assert snapshot.used_today == 0
        assert snapshot.last_usage_date == TODAY

    @pytest.mark.asyncio
    async def test_usage_at_limit(self, ledger):
        """is_limit_reached flips once the limit is used up."""
        for _ in range(5):
            await ledger.consume("user-1")

        snapshot = await ledger.get_usage("user-1")

        assert snapshot.is_limit_reached
        assert snapshot.remaining == 0

    @pytest.mark.asyncio
    async def test_ensure_user_quota_is_idempotent(self, db, ledger):
        """Provisioning twice creates one record."""
        assert await ledger.ensure_user_quota("user-1", email="pet@example.com") is True
        assert await ledger.ensure_user_quota("user-1") is False

        record = await load_quota(db, "user-1")
        assert record.email == "pet@example.com"
        assert record.daily_limit == 5
        assert record.used_today == 0
        assert record.last_usage_date is None
