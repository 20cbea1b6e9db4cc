"""
Delivery queue backed by ARQ on Redis.

Jobs carry only the note id; the worker reloads the note before delivering.
"""
from datetime import timedelta

from arq import ArqRedis, create_pool
from arq.connections import RedisSettings
from redis.exceptions import RedisError

from app.config import settings
from app.errors import QueueUnavailable
from app.logging_config import get_logger

# Name of the ARQ task that delivers one note (see app.worker)
DELIVER_NOTE_JOB = "deliver_note"

log = get_logger(component="delivery_queue")


class DeliveryQueue:
    """Admits delivery jobs to the shared queue."""

    def __init__(self, redis: ArqRedis):
        self.redis = redis

    async def admit(self, note_id: str, delay: float | None = None) -> None:
        """
        Admit a delivery job for note_id, optionally not visible before delay seconds.

        Raises:
            QueueUnavailable: Redis could not accept the job
        """
        defer_by = timedelta(seconds=delay) if delay else None
        try:
            await self.redis.enqueue_job(DELIVER_NOTE_JOB, note_id, _defer_by=defer_by)
        except (RedisError, OSError) as e:
            raise QueueUnavailable(f"Failed to admit delivery job for {note_id}: {e}") from e

        log.info("delivery_job_admitted", note_id=note_id, delay_seconds=delay)

    async def close(self) -> None:
        await self.redis.close()


async def create_delivery_queue(redis_url: str | None = None) -> DeliveryQueue:
    """Open an ARQ Redis pool and wrap it in a DeliveryQueue."""
    redis = await create_pool(RedisSettings.from_dsn(redis_url or settings.REDIS_URL))
    return DeliveryQueue(redis)
