"""
ARQ Background Worker for NoteDrop.

Delivers notes admitted by the poller. Run with:

    arq app.worker.WorkerSettings
"""
import asyncio

import httpx
from arq import Retry
from arq.connections import RedisSettings
from prometheus_client import start_http_server

from app.config import settings
from app.database import create_engine, create_session_factory
from app.errors import StorageUnavailable
from app.logging_config import configure_logging, get_logger
from app.sentry_config import capture_exception, capture_message, configure_sentry
from app.services.delivery_queue import DeliveryQueue
from app.services.delivery_service import DeliveryOutcome, DeliveryService
from app.services.note_store import NoteStore

# Redelivery delay when the note store is unreachable
STORAGE_RETRY_DELAY_SECONDS = 5

log = get_logger(component="worker")


async def startup(ctx: dict) -> None:
    """Build the worker's dependencies and place them in the job context."""
    configure_logging()
    configure_sentry()

    engine = create_engine()
    http_client = httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT_SECONDS)
    store = NoteStore(create_session_factory(engine))
    # ctx["redis"] is the pool ARQ itself consumes from
    queue = DeliveryQueue(ctx["redis"])

    ctx["engine"] = engine
    ctx["http_client"] = http_client
    ctx["delivery_service"] = DeliveryService(store, queue, http_client)

    if settings.WORKER_METRICS_PORT:
        start_http_server(settings.WORKER_METRICS_PORT)

    log.info("worker_started", max_jobs=settings.WORKER_MAX_JOBS)


async def shutdown(ctx: dict) -> None:
    """Release connections after ARQ has drained in-flight jobs."""
    await ctx["http_client"].aclose()
    await ctx["engine"].dispose()
    log.info("worker_stopped")


async def deliver_note(ctx: dict, note_id: str) -> dict:
    """Deliver one note to its webhook."""
    job_try = ctx.get("job_try", 1)
    service: DeliveryService = ctx["delivery_service"]

    try:
        result = await service.deliver(note_id)
    except StorageUnavailable as e:
        log.error("storage_unavailable", note_id=note_id, job_try=job_try, error=str(e))
        capture_exception(e)
        # Let the queue redeliver this job
        raise Retry(defer=STORAGE_RETRY_DELAY_SECONDS)

    if result.outcome == DeliveryOutcome.DEAD:
        capture_message(f"Note {note_id} is dead after {result.attempts} attempts", level="warning")

    if result.outcome == DeliveryOutcome.RETRY_SCHEDULED and not result.requeued:
        # Scheduling a new job failed; fall back to redelivering this one
        raise Retry(defer=result.retry_delay)

    return {"note_id": note_id, "status": result.outcome.value, "attempts": result.attempts}


# Register functions for ARQ
ARQ_FUNCTIONS = [
    deliver_note,
]


async def main():
    """Run the worker using arq cli."""
    log.info("use_arq_cli", command="arq app.worker.WorkerSettings", redis=settings.REDIS_URL)


class WorkerSettings:
    """Settings for ARQ worker - use with 'arq app.worker.WorkerSettings'"""
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    on_startup = startup
    on_shutdown = shutdown
    functions = ARQ_FUNCTIONS
    max_jobs = settings.WORKER_MAX_JOBS
    job_timeout = settings.WORKER_JOB_TIMEOUT_SECONDS
    max_tries = settings.WORKER_MAX_TRIES
    keep_result = 3600


if __name__ == "__main__":
    asyncio.run(main())
