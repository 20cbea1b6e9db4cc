"""Tests for due-note claiming and admission."""
import asyncio
from datetime import timedelta

from sqlalchemy import update

from app.database import create_session_factory
from app.errors import StorageUnavailable
from app.models.note import Note, NoteStatus
from app.services.note_store import NoteStore
from app.services.poller import DuePoller

from conftest import NOW, create_note


def make_poller(store, queue, clock, lease_seconds=300):
    return DuePoller(store, queue, interval_seconds=0.01, batch_size=100, lease_seconds=lease_seconds, clock=clock)


def set_columns(engine, note_id, **values):
    async def run():
        async with engine.begin() as conn:
            await conn.execute(update(Note).where(Note.id == note_id).values(**values))
    asyncio.run(run())


class TestPollOnce:

    def test_admits_due_note_once(self, store, queue, clock):
        note = create_note(store)
        poller = make_poller(store, queue, clock)

        assert asyncio.run(poller.poll_once()) == 1
        assert queue.admitted == [(note.id, None)]

        # Claimed notes stay out of the due set while the lease lasts
        assert asyncio.run(poller.poll_once()) == 0
        assert len(queue.admitted) == 1

    def test_claim_sets_lease_and_bumps_version(self, store, queue, clock):
        note = create_note(store)
        asyncio.run(make_poller(store, queue, clock, lease_seconds=60).poll_once())

        claimed = asyncio.run(store.get(note.id))
        assert claimed.status == NoteStatus.PENDING
        assert claimed.claimed_until == NOW + timedelta(seconds=60)
        assert claimed.version == note.version + 1
        assert claimed.attempts == []

    def test_future_note_not_claimed_until_release(self, store, queue, clock):
        note = create_note(store, release_at=NOW + timedelta(minutes=10))
        poller = make_poller(store, queue, clock)

        assert asyncio.run(poller.poll_once()) == 0
        clock.advance(599)
        assert asyncio.run(poller.poll_once()) == 0
        clock.advance(1)
        assert asyncio.run(poller.poll_once()) == 1
        assert queue.admitted == [(note.id, None)]

    def test_retry_scheduled_note_not_claimed_before_next_attempt(self, engine, store, queue, clock):
        note = create_note(store)
        set_columns(engine, note.id, attempt_count=1, next_attempt_at=NOW + timedelta(seconds=5))
        poller = make_poller(store, queue, clock)

        assert asyncio.run(poller.poll_once()) == 0
        clock.advance(5)
        assert asyncio.run(poller.poll_once()) == 1

    def test_terminal_notes_ignored(self, engine, store, queue, clock):
        for status in (NoteStatus.DELIVERED, NoteStatus.DEAD, NoteStatus.FAILED):
            note = create_note(store)
            set_columns(engine, note.id, status=status)

        assert asyncio.run(make_poller(store, queue, clock).poll_once()) == 0
        assert queue.admitted == []

    def test_expired_lease_is_reclaimed(self, store, queue, clock):
        note = create_note(store)
        poller = make_poller(store, queue, clock, lease_seconds=30)

        asyncio.run(poller.poll_once())
        clock.advance(30)
        assert asyncio.run(poller.poll_once()) == 1
        assert [job[0] for job in queue.admitted] == [note.id, note.id]

    def test_admit_failure_leaves_note_for_lease_expiry(self, store, queue, clock):
        note = create_note(store)
        poller = make_poller(store, queue, clock, lease_seconds=30)

        queue.fail = True
        assert asyncio.run(poller.poll_once()) == 0

        queue.fail = False
        assert asyncio.run(poller.poll_once()) == 0
        clock.advance(30)
        assert asyncio.run(poller.poll_once()) == 1
        assert queue.admitted == [(note.id, None)]

    def test_batch_size_and_release_order(self, store, queue, clock):
        late = create_note(store, release_at=NOW - timedelta(seconds=1))
        early = create_note(store, release_at=NOW - timedelta(hours=1))
        poller = DuePoller(store, queue, batch_size=1, clock=clock)

        asyncio.run(poller.poll_once())
        asyncio.run(poller.poll_once())
        assert [job[0] for job in queue.admitted] == [early.id, late.id]


class TestConcurrentClaims:

    def test_only_one_claim_wins_for_same_snapshot(self, store, clock):
        note = create_note(store)

        async def race():
            return await asyncio.gather(*[
                store.claim(note.id, note.version, clock(), 300) for _ in range(5)
            ])

        results = asyncio.run(race())
        assert results.count(True) == 1

    def test_parallel_pollers_admit_once(self, store, queue, clock):
        create_note(store)
        pollers = [make_poller(store, queue, clock) for _ in range(3)]

        async def race():
            return await asyncio.gather(*[p.poll_once() for p in pollers])

        assert sum(asyncio.run(race())) == 1
        assert len(queue.admitted) == 1


def test_run_stops_when_event_set(store, queue, clock):
    create_note(store)
    poller = make_poller(store, queue, clock)

    async def run():
        stop = asyncio.Event()
        task = asyncio.create_task(poller.run(stop))
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(run())
    assert len(queue.admitted) == 1


class FlakyStore(NoteStore):
    """Fails the first find_due calls, then behaves normally."""

    def __init__(self, session_factory, failures=1):
        super().__init__(session_factory)
        self.failures = failures
        self.polls = 0

    async def find_due(self, now, limit):
        self.polls += 1
        if self.polls <= self.failures:
            raise StorageUnavailable("db down")
        return await super().find_due(now, limit)


def test_run_keeps_polling_after_storage_outage(engine, queue, clock):
    store = FlakyStore(create_session_factory(engine), failures=2)
    note = create_note(store)
    poller = make_poller(store, queue, clock)

    async def run():
        stop = asyncio.Event()
        task = asyncio.create_task(poller.run(stop))
        for _ in range(100):
            if queue.admitted:
                break
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(run())
    assert store.polls >= 3
    assert queue.admitted == [(note.id, None)]
