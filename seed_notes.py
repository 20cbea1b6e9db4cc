"""
Script to seed the database with example notes.

Inserts pending notes that are due immediately, pointed at a local webhook
sink. Run this after create_tables.py.
"""
import asyncio
import os

from app.database import AsyncSessionLocal, engine
from app.models.base import utcnow
from app.services.note_store import NoteStore

SEED_COUNT = 50
SEED_WEBHOOK_URL = os.getenv("SEED_WEBHOOK_URL", "http://localhost:4000/sink/webhook")


async def seed_notes(store: NoteStore, count: int = SEED_COUNT, webhook_url: str = SEED_WEBHOOK_URL):
    """Create count numbered alert notes released now."""
    release_at = utcnow()
    notes = []
    for i in range(count):
        notes.append(await store.create(
            title=f"System Alert #{i + 1}",
            body="CPU usage is above threshold.",
            release_at=release_at,
            webhook_url=webhook_url,
        ))
    return notes


async def main():
    """Main entry point."""
    print("Seeding notes...")
    notes = await seed_notes(NoteStore(AsyncSessionLocal))
    await engine.dispose()
    print(f"Inserted {len(notes)} notes")


if __name__ == "__main__":
    asyncio.run(main())
