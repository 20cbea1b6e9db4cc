"""
Idempotency key generation for webhook deliveries.

The key depends only on the note identity and its release time, so every
retry of the same note sends the same X-Idempotency-Key and the receiver
can collapse duplicates.
"""
import hashlib
from datetime import datetime, timezone


def isoformat_utc(value: datetime) -> str:
    """Render a naive-UTC or aware datetime as ISO-8601 in UTC, the form sent on the wire."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def idempotency_key(note_id: str, release_at: datetime | str) -> str:
    """Generate a SHA-256 idempotency key from note id and release time."""
    if isinstance(release_at, datetime):
        release_at = isoformat_utc(release_at)
    data = f"{note_id}{release_at}"
    return hashlib.sha256(data.encode()).hexdigest()
