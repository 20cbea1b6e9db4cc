"""
Note store: the only code that reads or writes note records.

Every write made by the poller, the worker or replay is a conditional
UPDATE that names the status and version the caller observed. Zero
affected rows means someone else got there first and the caller must
back off.
"""
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import noload

from app.errors import StorageUnavailable
from app.models.note import Note, NoteAttempt, NoteStatus, REPLAYABLE_STATUSES, can_transition


@dataclass(frozen=True)
class AttemptRecord:
    """Values for a new NoteAttempt row."""
    at: datetime
    status_code: int
    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class DeliveryTransition:
    """Result of one delivery execution, applied atomically to a note."""
    attempt: AttemptRecord
    status: NoteStatus
    delivered_at: datetime | None = None
    next_attempt_at: datetime | None = None
    claimed_until: datetime | None = None

    def __post_init__(self):
        if not can_transition(NoteStatus.PENDING, self.status):
            raise ValueError(f"Delivery cannot move a pending note to {self.status.value}")


def due_filter(now: datetime):
    """SQL criteria for notes the poller may claim at time now."""
    return (
        Note.status == NoteStatus.PENDING,
        Note.release_at <= now,
        or_(Note.next_attempt_at.is_(None), Note.next_attempt_at <= now),
        or_(Note.claimed_until.is_(None), Note.claimed_until <= now),
    )


class NoteStore:
    """Async storage adapter for notes backed by SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self):
        try:
            async with self.session_factory() as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            # asyncpg reports an unreachable server as a bare OSError
            raise StorageUnavailable(f"Note store unavailable: {e}") from e

    async def create(
        self,
        title: str,
        body: str,
        release_at: datetime,
        webhook_url: str
    ) -> Note:
        """
        Create a new note in PENDING status.

        Args:
            title: Note title
            body: Note body
            release_at: Naive UTC instant after which the note is due
            webhook_url: Absolute URL receiving the delivery

        Returns:
            Newly created Note
        """
        async with self._session() as session:
            note = Note(
                title=title,
                body=body,
                release_at=release_at,
                webhook_url=webhook_url,
                status=NoteStatus.PENDING,
                attempt_count=0,
                version=0,
            )
            session.add(note)
            await session.commit()
            await session.refresh(note)
            return note

    async def get(self, note_id: str) -> Note | None:
        """Get note by ID, with its attempts."""
        async with self._session() as session:
            stmt = select(Note).where(Note.id == note_id)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def find_due(self, now: datetime, limit: int) -> list[Note]:
        """Get up to limit claimable notes, earliest release first."""
        async with self._session() as session:
            stmt = (
                select(Note)
                .options(noload(Note.attempts))
                .where(*due_filter(now))
                .order_by(Note.release_at)
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_notes(
        self,
        status: NoteStatus | None = None,
        skip: int = 0,
        limit: int = 20
    ) -> list[Note]:
        """Get a page of notes sorted by release_at, optionally filtered by status."""
        async with self._session() as session:
            stmt = select(Note).order_by(Note.release_at).offset(skip).limit(limit)
            if status is not None:
                stmt = stmt.where(Note.status == status)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count(self, status: NoteStatus | None = None) -> int:
        """Count notes, optionally filtered by status."""
        async with self._session() as session:
            stmt = select(func.count()).select_from(Note)
            if status is not None:
                stmt = stmt.where(Note.status == status)
            result = await session.execute(stmt)
            return result.scalar_one()

    async def claim(
        self,
        note_id: str,
        expected_version: int,
        now: datetime,
        lease_seconds: float
    ) -> bool:
        """
        Take the admission lease on a due note.

        Succeeds only if the note is still due and unchanged since it was
        read at expected_version.

        Returns:
            True if this caller now owns the lease
        """
        async with self._session() as session:
            stmt = (
                update(Note)
                .where(Note.id == note_id, Note.version == expected_version, *due_filter(now))
                .values(
                    claimed_until=now + timedelta(seconds=lease_seconds),
                    version=Note.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def apply_delivery(
        self,
        note_id: str,
        expected_version: int,
        transition: DeliveryTransition
    ) -> bool:
        """
        Record an attempt and move the note to its next state in one transaction.

        Returns:
            False if the note changed since expected_version; nothing is written
        """
        async with self._session() as session:
            async with session.begin():
                stmt = (
                    update(Note)
                    .where(
                        Note.id == note_id,
                        Note.status == NoteStatus.PENDING,
                        Note.version == expected_version,
                    )
                    .values(
                        status=transition.status,
                        attempt_count=Note.attempt_count + 1,
                        delivered_at=transition.delivered_at,
                        next_attempt_at=transition.next_attempt_at,
                        claimed_until=transition.claimed_until,
                        version=Note.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                result = await session.execute(stmt)
                if result.rowcount != 1:
                    return False

                attempt = transition.attempt
                session.add(NoteAttempt(
                    note_id=note_id,
                    at=attempt.at,
                    status_code=attempt.status_code,
                    ok=attempt.ok,
                    error=attempt.error,
                ))
            return True

    async def reset_for_replay(self, note_id: str, expected_version: int) -> bool:
        """
        Reset a dead or failed note to PENDING and drop its attempts.

        release_at is left untouched.

        Returns:
            False if the note is no longer replayable at expected_version
        """
        async with self._session() as session:
            async with session.begin():
                stmt = (
                    update(Note)
                    .where(
                        Note.id == note_id,
                        Note.status.in_(list(REPLAYABLE_STATUSES)),
                        Note.version == expected_version,
                    )
                    .values(
                        status=NoteStatus.PENDING,
                        attempt_count=0,
                        delivered_at=None,
                        next_attempt_at=None,
                        claimed_until=None,
                        version=Note.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                result = await session.execute(stmt)
                if result.rowcount != 1:
                    return False

                await session.execute(
                    delete(NoteAttempt).where(NoteAttempt.note_id == note_id)
                )
            return True

    async def delete(self, note_id: str) -> bool:
        """Delete a note and its attempts. Returns False if it did not exist."""
        async with self._session() as session:
            async with session.begin():
                await session.execute(delete(NoteAttempt).where(NoteAttempt.note_id == note_id))
                result = await session.execute(delete(Note).where(Note.id == note_id))
            return result.rowcount == 1
