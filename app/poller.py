"""
Due-note poller process.

Runs independently of the worker pool. Several instances may run at once;
conditional claims keep them from admitting the same note twice. Run with:

    python -m app.poller
"""
import asyncio
import signal

from app.config import settings
from app.database import create_engine, create_session_factory
from app.logging_config import configure_logging, get_logger
from app.sentry_config import configure_sentry
from app.services.delivery_queue import create_delivery_queue
from app.services.note_store import NoteStore
from app.services.poller import DuePoller

log = get_logger(component="poller")


async def main():
    """Start the poller and stop it cleanly on SIGINT or SIGTERM."""
    configure_logging()
    configure_sentry()

    engine = create_engine()
    queue = await create_delivery_queue(settings.REDIS_URL)
    poller = DuePoller(NoteStore(create_session_factory(engine)), queue)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await poller.run(stop)
    finally:
        await queue.close()
        await engine.dispose()
        log.info("poller_shutdown_complete")


if __name__ == "__main__":
    asyncio.run(main())
