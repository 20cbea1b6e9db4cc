"""
Shared fixtures.

Each test gets a fresh SQLite file through aiosqlite. NullPool keeps
connections from leaking between the event loops that asyncio.run creates.
"""
import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from app.database import create_session_factory
from app.errors import QueueUnavailable
from app.models.base import Base
from app.models.note import Note, NoteAttempt  # noqa: F401
from app.services.note_store import NoteStore

WEBHOOK_URL = "http://receiver.test/webhook"
NOW = datetime(2026, 10, 19, 12, 0, 0)


class FakeClock:
    """Callable clock that tests move forward by hand."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeQueue:
    """In-memory stand-in for DeliveryQueue."""

    def __init__(self):
        self.admitted: list[tuple[str, float | None]] = []
        self.fail = False

    async def admit(self, note_id: str, delay: float | None = None) -> None:
        if self.fail:
            raise QueueUnavailable("redis down")
        self.admitted.append((note_id, delay))

    def take(self) -> list[tuple[str, float | None]]:
        jobs, self.admitted = self.admitted, []
        return jobs


@pytest.fixture
def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'notes.db'}", poolclass=NullPool)

    async def create_all():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(create_all())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture
def store(engine) -> NoteStore:
    return NoteStore(create_session_factory(engine))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue() -> FakeQueue:
    return FakeQueue()


def create_note(store: NoteStore, release_at: datetime = NOW - timedelta(seconds=1), **kwargs) -> Note:
    """Create a note synchronously for test setup."""
    return asyncio.run(store.create(
        title=kwargs.get("title", "Reminder"),
        body=kwargs.get("body", "Water the plants"),
        release_at=release_at,
        webhook_url=kwargs.get("webhook_url", WEBHOOK_URL),
    ))
