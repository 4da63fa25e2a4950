"""Main entry point for the jobrunner worker process."""

import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog

from jobrunner import __version__
from jobrunner.config import Settings, settings as default_settings
from jobrunner.jobs import (
    DelayStore,
    JobQueue,
    JobType,
    MemoryDelayStore,
    RedisDelayStore,
    WebhookNotificationProcessor,
)
from jobrunner.jobs.store import get_redis

logger = structlog.get_logger()


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
    )


def create_store(settings: Settings) -> DelayStore:
    """Create the store: Redis when configured, in-memory otherwise.

    The in-memory store is only reachable from this process, so jobs must be
    enqueued through the same JobQueue that runs the workers.
    """
    if settings.uses_redis:
        return RedisDelayStore(get_redis(settings.redis_url), settings.queue_name)

    logger.warning("redis_not_configured_using_memory_store", queue_name=settings.queue_name)
    return MemoryDelayStore()


def create_job_queue(
    settings: Settings, store: Optional[DelayStore] = None
) -> JobQueue:
    """Build the job queue and register the built-in processors."""
    queue = JobQueue.from_settings(settings, store or create_store(settings))

    if settings.notification_webhook_url:
        queue.register_processor(
            JobType.SEND_NOTIFICATION,
            WebhookNotificationProcessor(
                settings.notification_webhook_url,
                timeout=settings.notification_timeout,
            ),
        )

    return queue


@asynccontextmanager
async def lifespan(queue: JobQueue) -> AsyncIterator[JobQueue]:
    """Run the queue's workers for the duration of the block."""
    if len(queue.registry) == 0:
        logger.warning(
            "job_queue_has_no_processors",
            store=type(queue.store).__name__,
        )

    await queue.start_processing()

    try:
        yield queue
    finally:
        await queue.stop_processing(wait=True)
        await queue.store.close()
        logger.info(
            "job_queue_shutdown",
            completed=queue.history.completed_count,
            failed=queue.history.failed_count,
        )


async def serve(settings: Settings = default_settings) -> None:
    """Process jobs until SIGINT or SIGTERM."""
    logger.info(
        "jobrunner_starting",
        version=__version__,
        queue_name=settings.queue_name,
        concurrency=settings.job_concurrency,
    )

    queue = create_job_queue(settings)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with lifespan(queue):
        await stop.wait()
        logger.info("shutdown_signal_received")


def main() -> None:
    configure_logging(default_settings.log_level)
    asyncio.run(serve())


if __name__ == "__main__":
    main()
