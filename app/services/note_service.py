"""
Note service for administrative operations.

Creating and listing notes, and replaying dead or failed ones.
"""
from datetime import datetime

from app.errors import NoteNotFound, ReplayNotAllowed
from app.logging_config import get_logger
from app.models.base import as_utc
from app.models.note import Note, NoteStatus, REPLAYABLE_STATUSES
from app.routes.metrics import track_note_replayed
from app.services.note_store import NoteStore

log = get_logger(component="note_service")


class NoteService:
    """Service for managing notes."""

    def __init__(self, store: NoteStore):
        self.store = store

    async def create_note(
        self,
        title: str,
        body: str,
        release_at: datetime,
        webhook_url: str
    ) -> Note:
        """Create a PENDING note; aware release times are normalised to UTC."""
        note = await self.store.create(title, body, as_utc(release_at), webhook_url)
        log.info("note_created", note_id=note.id, release_at=note.release_at.isoformat())
        return note

    async def get_note(self, note_id: str) -> Note:
        """
        Get a note with its attempts.

        Raises:
            NoteNotFound: No note with this id
        """
        note = await self.store.get(note_id)
        if note is None:
            raise NoteNotFound(note_id)
        return note

    async def list_notes(
        self,
        status: NoteStatus | None,
        page: int,
        per_page: int
    ) -> tuple[list[Note], int]:
        """
        Get one page of notes sorted by release_at.

        Returns:
            (notes on the page, total matching notes)
        """
        skip = (page - 1) * per_page
        notes = await self.store.list_notes(status=status, skip=skip, limit=per_page)
        total = await self.store.count(status=status)
        return notes, total

    async def replay(self, note_id: str) -> Note:
        """
        Reset a dead or failed note to PENDING with no attempts.

        release_at is kept, so a note released in the past is due again on
        the next poll.

        Raises:
            NoteNotFound: No note with this id
            ReplayNotAllowed: The note is not dead or failed, or changed concurrently
        """
        note = await self.get_note(note_id)
        if note.status not in REPLAYABLE_STATUSES:
            raise ReplayNotAllowed(note_id, note.status.value)

        reset = await self.store.reset_for_replay(note.id, note.version)
        if not reset:
            current = await self.get_note(note_id)
            raise ReplayNotAllowed(note_id, current.status.value)

        log.info("note_replayed", note_id=note_id, previous_status=note.status.value)
        track_note_replayed()
        return await self.get_note(note_id)

    async def delete_note(self, note_id: str) -> None:
        """
        Delete a note. An in-flight delivery job for it becomes a no-op.

        Raises:
            NoteNotFound: No note with this id
        """
        if not await self.store.delete(note_id):
            raise NoteNotFound(note_id)
        log.info("note_deleted", note_id=note_id)
