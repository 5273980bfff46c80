"""Pytest configuration and fixtures for petstyle tests."""

import asyncio
import io
from datetime import date

import pytest
import pytest_asyncio
from PIL import Image

from petstyle.blob.store import ArtifactNotFoundError
from petstyle.db.connection import DatabaseConnection
from petstyle.quota.ledger import QuotaLedger


TODAY = date(2026, 10, 19)


# =============================================================================
# Helpers
# =============================================================================


def make_image_bytes(
    size: tuple[int, int] = (64, 64),
    mode: str = "RGB",
    color: str | tuple = "orange",
    fmt: str = "PNG",
) -> bytes:
    """Encode a solid-color test image."""
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


class FixedClock:
    """Settable processing date for quota tests."""

    def __init__(self, today: date = TODAY):
        self.today = today

    def __call__(self) -> date:
        return self.today


class FakeArtifactStore:
    """In-memory artifact store."""

    def __init__(self, objects: dict[str, bytes] | None = None):
        self.objects = dict(objects or {})
        self.uploads: list[tuple[str, str]] = []

    async def download(self, ref: str) -> bytes:
        if ref not in self.objects:
            raise ArtifactNotFoundError(ref)
        return self.objects[ref]

    async def upload(self, ref: str, data: bytes, content_type: str) -> str:
        self.objects[ref] = data
        self.uploads.append((ref, content_type))
        return f"memory://{ref}"


class FakeProvider:
    """Generation provider returning canned bytes or raising a canned error."""

    def __init__(
        self,
        result: bytes | None = None,
        error: Exception | None = None,
        delay: float = 0,
    ):
        self.result = result if result is not None else make_image_bytes((2048, 1024))
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    async def generate(self, input_bytes: bytes, job_type, style: str) -> bytes:
        self.calls.append((str(getattr(job_type, "value", job_type)), style))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class RecordingLedger(QuotaLedger):
    """Quota ledger that counts refunds and can be told to fail them."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.refund_calls = 0
        self.fail_refund = False

    async def refund(self, user_id: str) -> bool:
        self.refund_calls += 1
        if self.fail_refund:
            raise RuntimeError("quota store unavailable")
        return await super().refund(user_id)


# =============================================================================
# Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh SQLite database with all tables created."""
    connection = DatabaseConnection(url=f"sqlite+aiosqlite:///{tmp_path / 'petstyle.db'}")
    await connection.create_tables()
    yield connection
    await connection.close()


@pytest.fixture
def clock():
    """Processing date pinned to TODAY."""
    return FixedClock()


@pytest.fixture
def ledger(db, clock):
    """Recording quota ledger with the default limit of 5."""
    return RecordingLedger(db=db, default_daily_limit=5, clock=clock)


@pytest.fixture
def input_photo():
    """A small JPEG standing in for an uploaded pet photo."""
    return make_image_bytes((320, 240), fmt="JPEG")


@pytest.fixture
def store():
    """Empty in-memory artifact store."""
    return FakeArtifactStore()


@pytest.fixture
def provider():
    """Provider returning a 2048x1024 PNG."""
    return FakeProvider()
