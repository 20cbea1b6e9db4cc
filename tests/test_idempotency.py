"""Tests for idempotency key generation."""
import uuid
from datetime import datetime, timedelta, timezone

from app.services.idempotency import idempotency_key, isoformat_utc

RELEASE_AT = datetime(2026, 10, 19, 12, 0, 0)


class TestIdempotencyKey:

    def test_is_sha256_hex(self):
        key = idempotency_key("note-1", RELEASE_AT)
        assert len(key) == 64
        int(key, 16)

    def test_same_inputs_same_key(self):
        assert idempotency_key("note-1", RELEASE_AT) == idempotency_key("note-1", RELEASE_AT)

    def test_different_note_different_key(self):
        assert idempotency_key("note-1", RELEASE_AT) != idempotency_key("note-2", RELEASE_AT)

    def test_different_release_different_key(self):
        later = RELEASE_AT + timedelta(seconds=1)
        assert idempotency_key("note-1", RELEASE_AT) != idempotency_key("note-1", later)

    def test_datetime_and_wire_string_agree(self):
        assert idempotency_key("note-1", RELEASE_AT) == idempotency_key("note-1", isoformat_utc(RELEASE_AT))

    def test_aware_and_naive_utc_agree(self):
        aware = RELEASE_AT.replace(tzinfo=timezone.utc)
        assert idempotency_key("note-1", aware) == idempotency_key("note-1", RELEASE_AT)

    def test_no_collisions_over_large_sample(self):
        keys = set()
        pairs = 0
        for _ in range(2000):
            note_id = str(uuid.uuid4())
            for offset in range(5):
                keys.add(idempotency_key(note_id, RELEASE_AT + timedelta(minutes=offset)))
                pairs += 1
        assert len(keys) == pairs


def test_isoformat_utc_marks_timezone():
    assert isoformat_utc(RELEASE_AT) == "2026-10-19T12:00:00+00:00"
    plus_two = datetime(2026, 10, 19, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))
    assert isoformat_utc(plus_two) == "2026-10-19T12:00:00+00:00"
