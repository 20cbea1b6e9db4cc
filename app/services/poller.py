"""
Due-note poller.

Every interval, reads pending notes whose release time (and scheduled retry
time, if any) has passed, claims each one with a conditional update and
admits one delivery job per successful claim.
"""
import asyncio
from datetime import datetime
from typing import Callable

from app.config import settings
from app.errors import QueueUnavailable, StorageUnavailable
from app.logging_config import get_logger
from app.models.base import utcnow
from app.routes.metrics import track_claim_lost, track_note_claimed
from app.sentry_config import capture_exception
from app.services.delivery_queue import DeliveryQueue
from app.services.note_store import NoteStore


class DuePoller:
    """Periodically admits due notes to the delivery queue."""

    def __init__(
        self,
        store: NoteStore,
        queue: DeliveryQueue,
        interval_seconds: float = settings.POLL_INTERVAL_SECONDS,
        batch_size: int = settings.POLL_BATCH_SIZE,
        lease_seconds: float = settings.CLAIM_LEASE_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.queue = queue
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.lease_seconds = lease_seconds
        self.clock = clock
        self.log = get_logger(component="poller")

    async def poll_once(self) -> int:
        """
        Run one poll cycle.

        Returns:
            Number of notes claimed and admitted
        """
        now = self.clock()
        due_notes = await self.store.find_due(now, self.batch_size)
        self.log.info("due_notes_found", count=len(due_notes))

        admitted = 0
        for note in due_notes:
            claimed = await self.store.claim(note.id, note.version, now, self.lease_seconds)
            if not claimed:
                self.log.info("claim_lost", note_id=note.id)
                track_claim_lost()
                continue

            try:
                await self.queue.admit(note.id)
            except QueueUnavailable as e:
                # The lease expires and the note is picked up again
                self.log.error("admit_failed", note_id=note.id, error=str(e))
                capture_exception(e)
                continue

            admitted += 1
            track_note_claimed()

        return admitted

    async def run(self, stop: asyncio.Event) -> None:
        """Poll until stop is set, finishing the current cycle first."""
        self.log.info("poller_started", interval_seconds=self.interval_seconds)
        while not stop.is_set():
            try:
                await self.poll_once()
            except StorageUnavailable as e:
                self.log.error("poll_failed", error=str(e))
                capture_exception(e)

            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        self.log.info("poller_stopped")
