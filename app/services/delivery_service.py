"""
Delivery Service

Executes one webhook delivery attempt for a note and advances its state:
delivered on HTTP 200, otherwise a failed attempt followed by a backed-off
retry, or dead once the attempt budget is spent.
"""
import asyncio
import enum
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Sequence

import httpx

from app.config import settings
from app.errors import QueueUnavailable, TerminalDeliveryError, TransientDeliveryError
from app.logging_config import get_logger
from app.models.base import utcnow
from app.models.note import Note, NoteStatus
from app.routes.metrics import (
    track_note_dead,
    track_note_delivered,
    track_retry_scheduled,
    track_webhook_attempt,
)
from app.services.backoff import backoff_delay, validate_delays
from app.services.delivery_queue import DeliveryQueue
from app.services.idempotency import isoformat_utc, idempotency_key
from app.services.note_store import AttemptRecord, DeliveryTransition, NoteStore


class DeliveryOutcome(str, enum.Enum):
    """What a single execution of the delivery job did."""
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"
    SUPERSEDED = "superseded"
    DELIVERED = "delivered"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD = "dead"


@dataclass
class DeliveryResult:
    """Outcome of DeliveryService.deliver."""
    note_id: str
    outcome: DeliveryOutcome
    attempts: int = 0
    retry_delay: float | None = None
    requeued: bool = False


def build_payload(note: Note) -> dict:
    """JSON body sent to the webhook."""
    return {
        "title": note.title,
        "body": note.body,
        "releaseAt": isoformat_utc(note.release_at),
    }


def build_headers(note: Note) -> dict:
    """Headers identifying the note and its deduplication token."""
    return {
        "X-Note-Id": note.id,
        "X-Idempotency-Key": idempotency_key(note.id, note.release_at),
    }


class DeliveryService:
    """Delivers notes to their webhooks."""

    def __init__(
        self,
        store: NoteStore,
        queue: DeliveryQueue,
        http_client: httpx.AsyncClient,
        max_attempts: int = settings.MAX_ATTEMPTS,
        backoff_delays: Sequence[float] = tuple(settings.BACKOFF_DELAYS_SECONDS),
        timeout_seconds: float = settings.WEBHOOK_TIMEOUT_SECONDS,
        lease_seconds: float = settings.CLAIM_LEASE_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        validate_delays(backoff_delays)
        self.store = store
        self.queue = queue
        self.http_client = http_client
        self.max_attempts = max_attempts
        self.backoff_delays = tuple(backoff_delays)
        self.timeout_seconds = timeout_seconds
        self.lease_seconds = lease_seconds
        self.clock = clock

    async def send_webhook(self, note: Note) -> int:
        """
        POST the note to its webhook.

        Returns:
            The response status code (always 200)

        Raises:
            TransientDeliveryError: Non-200 response, timeout or transport failure
        """
        try:
            # httpx applies its timeout per phase; wait_for caps the whole request
            response = await asyncio.wait_for(
                self.http_client.post(
                    note.webhook_url,
                    json=build_payload(note),
                    headers=build_headers(note),
                    timeout=self.timeout_seconds,
                ),
                timeout=self.timeout_seconds,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise TransientDeliveryError(
                f"Timed out after {self.timeout_seconds}s: {e.__class__.__name__}"
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransientDeliveryError(str(e) or e.__class__.__name__) from e

        if response.status_code != 200:
            raise TransientDeliveryError(
                f"Bad status: {response.status_code}", status_code=response.status_code
            )
        return response.status_code

    def next_transition(self, note: Note, error: TransientDeliveryError | None, now: datetime) -> tuple[DeliveryTransition, float | None]:
        """
        Decide the note's next state after one attempt.

        Returns:
            (transition, retry delay in seconds or None)
        """
        if error is None:
            transition = DeliveryTransition(
                attempt=AttemptRecord(at=now, status_code=200, ok=True),
                status=NoteStatus.DELIVERED,
                delivered_at=now,
            )
            return transition, None

        attempt = AttemptRecord(at=now, status_code=error.status_code, ok=False, error=error.message)
        attempts = note.attempt_count + 1
        if attempts >= self.max_attempts:
            return DeliveryTransition(attempt=attempt, status=NoteStatus.DEAD), None

        delay = backoff_delay(attempts, self.backoff_delays)
        next_attempt_at = now + timedelta(seconds=delay)
        transition = DeliveryTransition(
            attempt=attempt,
            status=NoteStatus.PENDING,
            next_attempt_at=next_attempt_at,
            # Keeps the poller away until the scheduled job has had its chance
            claimed_until=next_attempt_at + timedelta(seconds=self.lease_seconds),
        )
        return transition, delay

    async def deliver(self, note_id: str) -> DeliveryResult:
        """
        Run one delivery attempt for note_id.

        Storage errors propagate as StorageUnavailable. A failed requeue is
        reported through DeliveryResult.requeued so the caller can fall back
        to the queue's own redelivery.
        """
        log = get_logger(note_id=note_id, component="delivery")

        note = await self.store.get(note_id)
        if note is None:
            log.warning("note_not_found")
            return DeliveryResult(note_id, DeliveryOutcome.NOT_FOUND)

        if note.status != NoteStatus.PENDING:
            log.info("delivery_skipped", reason="not_pending", status=note.status.value)
            return DeliveryResult(note_id, DeliveryOutcome.SKIPPED, attempts=note.attempt_count)

        if note.next_attempt_at is not None and note.next_attempt_at > self.clock():
            log.info("delivery_skipped", reason="retry_not_due", next_attempt_at=note.next_attempt_at.isoformat())
            return DeliveryResult(note_id, DeliveryOutcome.SKIPPED, attempts=note.attempt_count)

        error = None
        started = time.monotonic()
        try:
            await self.send_webhook(note)
        except TransientDeliveryError as e:
            error = e
        track_webhook_attempt(ok=error is None, duration_seconds=time.monotonic() - started)

        now = self.clock()
        transition, delay = self.next_transition(note, error, now)
        attempts = note.attempt_count + 1

        applied = await self.store.apply_delivery(note.id, note.version, transition)
        if not applied:
            # Another execution of this job already recorded its result
            log.warning("delivery_superseded", attempt=attempts)
            return DeliveryResult(note_id, DeliveryOutcome.SUPERSEDED, attempts=note.attempt_count)

        if transition.status == NoteStatus.DELIVERED:
            log.info("note_delivered", attempt=attempts)
            track_note_delivered()
            return DeliveryResult(note_id, DeliveryOutcome.DELIVERED, attempts=attempts)

        if transition.status == NoteStatus.DEAD:
            dead = TerminalDeliveryError(note_id, attempts)
            log.warning("note_dead", attempt=attempts, status_code=error.status_code, error=str(dead))
            track_note_dead()
            return DeliveryResult(note_id, DeliveryOutcome.DEAD, attempts=attempts)

        log.info(
            "delivery_failed_retry_scheduled",
            attempt=attempts,
            max_attempts=self.max_attempts,
            status_code=error.status_code,
            error=error.message,
            retry_in_seconds=delay,
        )
        track_retry_scheduled()

        result = DeliveryResult(note_id, DeliveryOutcome.RETRY_SCHEDULED, attempts=attempts, retry_delay=delay)
        try:
            await self.queue.admit(note.id, delay=delay)
            result.requeued = True
        except QueueUnavailable as e:
            log.error("requeue_failed", error=str(e), retry_in_seconds=delay)
        return result
