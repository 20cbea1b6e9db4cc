"""
Note model for scheduled webhook delivery.

A note is created PENDING and becomes due once release_at has passed.
The poller claims due notes, the worker delivers them and records one
NoteAttempt per webhook call. All writes made by the scheduler go through
conditional updates keyed on status and version (see NoteStore).
"""
import uuid
import enum
from datetime import datetime
from sqlalchemy import String, Text, Integer, Boolean, DateTime, ForeignKey, Index, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import Base, TimestampMixin


class NoteStatus(str, enum.Enum):
    """Note status enum."""
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
    DEAD = "dead"


# Statuses an operator may replay back to PENDING
REPLAYABLE_STATUSES = frozenset({NoteStatus.DEAD, NoteStatus.FAILED})

# Forward transitions; replay is the only way back to PENDING
ALLOWED_TRANSITIONS: dict[NoteStatus, frozenset[NoteStatus]] = {
    NoteStatus.PENDING: frozenset({NoteStatus.PENDING, NoteStatus.DELIVERED, NoteStatus.DEAD}),
    NoteStatus.DELIVERED: frozenset(),
    NoteStatus.FAILED: frozenset({NoteStatus.PENDING}),
    NoteStatus.DEAD: frozenset({NoteStatus.PENDING}),
}


def can_transition(current: NoteStatus, target: NoteStatus) -> bool:
    """Return True if the state machine allows moving from current to target."""
    return target in ALLOWED_TRANSITIONS[NoteStatus(current)]


class Note(Base, TimestampMixin):
    """
    A notification payload scheduled for delivery to a webhook.

    title, body, release_at and webhook_url never change after creation.
    next_attempt_at marks a scheduled retry ("not eligible before") and is
    kept apart from release_at. claimed_until is the lease taken by the
    poller when it admits a job; while it lies in the future the note is
    in flight.
    """
    __tablename__ = "notes"
    __table_args__ = (
        Index("ix_notes_status_release_at", "status", "release_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    release_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    webhook_url: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[NoteStatus] = mapped_column(
        SQLEnum(NoteStatus, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=NoteStatus.PENDING,
        index=True
    )
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    claimed_until: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    attempts: Mapped[list["NoteAttempt"]] = relationship(
        back_populates="note",
        order_by="NoteAttempt.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin"
    )

    def __repr__(self):
        return f"<Note(id={self.id}, status={self.status}, attempts={self.attempt_count})>"


class NoteAttempt(Base):
    """Immutable record of one webhook call made for a note."""
    __tablename__ = "note_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    note_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("notes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    ok: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    note: Mapped[Note] = relationship(back_populates="attempts")

    def __repr__(self):
        return f"<NoteAttempt(note_id={self.note_id}, status_code={self.status_code}, ok={self.ok})>"
