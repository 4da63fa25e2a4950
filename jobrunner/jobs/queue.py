import asyncio
import inspect
import structlog
from typing import Any, Callable, Iterable, Optional

from jobrunner.errors import EnqueueError
from jobrunner.jobs.history import JobHistory
from jobrunner.jobs.models import Job, JobPriority, JobStatus, generate_job_id, now_ms
from jobrunner.jobs.registry import ProcessorRegistry, job_type_key
from jobrunner.jobs.retry import RetryPolicy
from jobrunner.jobs.store import DelayStore
from jobrunner.jobs.worker import start_worker

logger = structlog.get_logger()


class JobQueue:
    """Dispatcher for background jobs.

    Owns the processor registry, the worker pool and the retry policy. All
    pending jobs live in the DelayStore; jobs being executed are tracked in
    an in-memory map keyed by job id.

    Example:
        queue = JobQueue(MemoryDelayStore(), concurrency=2)
        queue.register_processor("send_email", EmailProcessor())
        await queue.start_processing()
        job_id = await queue.add_job("send_email", {"to": "a@example.com"})
    """

    def __init__(
        self,
        store: DelayStore,
        registry: Optional[ProcessorRegistry] = None,
        *,
        concurrency: int = 5,
        retry_delay: int = 5000,
        max_retries: int = 3,
        poll_interval: float = 1.0,
        error_backoff: float = 5.0,
        remove_on_complete: int = 100,
        remove_on_fail: int = 50,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize job queue.

        Args:
            store: DelayStore holding pending jobs
            registry: Processor table; a new empty one is created if omitted
            concurrency: Number of worker loops started by start_processing
            retry_delay: Base backoff in milliseconds
            max_retries: Default attempt budget for new jobs
            poll_interval: Seconds a worker sleeps when no job is ready
            error_backoff: Seconds a worker sleeps after a store error
            remove_on_complete: Completed jobs kept in history
            remove_on_fail: Failed/cancelled jobs kept in history
            clock: Returns the current time in epoch milliseconds
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")

        self.store = store
        self.registry = registry if registry is not None else ProcessorRegistry()
        self.concurrency = concurrency
        self.max_retries = max_retries
        self.poll_interval = poll_interval
        self.error_backoff = error_backoff
        self.retry_policy = RetryPolicy(base_delay=retry_delay)
        self.history = JobHistory(remove_on_complete, remove_on_fail)
        self.clock = clock

        self._running = False
        self._workers: list[asyncio.Task] = []
        self._processing: dict[str, Job] = {}

        logger.info(
            "job_queue_initialized",
            concurrency=concurrency,
            retry_delay=retry_delay,
            max_retries=max_retries,
            source="queue",
        )

    @classmethod
    def from_settings(
        cls,
        settings,
        store: DelayStore,
        registry: Optional[ProcessorRegistry] = None,
    ) -> "JobQueue":
        """Build a queue from a Settings instance."""
        return cls(
            store,
            registry,
            concurrency=settings.job_concurrency,
            retry_delay=settings.job_retry_delay,
            max_retries=settings.job_max_retries,
            poll_interval=settings.job_poll_interval,
            error_backoff=settings.job_error_backoff,
            remove_on_complete=settings.job_remove_on_complete,
            remove_on_fail=settings.job_remove_on_fail,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    def register_processor(self, job_type: str, processor: Any) -> None:
        """Associate a job type with a processor. Last registration wins.

        Raises:
            RuntimeError: If processing has already started
        """
        self.registry.register(job_type, processor)

        logger.info(
            "processor_registered",
            job_type=job_type_key(job_type),
            processor=type(processor).__name__,
            source="queue",
        )

    async def add_job(
        self,
        job_type: str,
        payload: Any = None,
        *,
        priority: Optional[JobPriority] = None,
        delay: Optional[int] = None,
        max_attempts: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> str:
        """Add a new job to the queue.

        Args:
            job_type: Type of job, selects the processor
            payload: JSON-serializable data handed to the processor
            priority: Advisory priority (defaults to NORMAL)
            delay: Milliseconds before the job becomes claimable
            max_attempts: Attempt budget (defaults to max_retries)
            tags: Optional labels

        Returns:
            Job ID

        Raises:
            ValueError: If delay is negative or max_attempts is below 1
            EnqueueError: If the job could not be stored

        Example:
            job_id = await queue.add_job('send_email', {'to': 'a@b.c'}, delay=60_000)
        """
        if delay is not None and delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")
        if max_attempts is not None and max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        now = self.clock()
        job = Job(
            id=generate_job_id(),
            type=job_type_key(job_type),
            payload=payload,
            priority=JobPriority(priority) if priority is not None else JobPriority.NORMAL,
            max_attempts=max_attempts if max_attempts is not None else self.max_retries,
            created_at=now,
            scheduled_for=now + delay if delay else None,
            tags=list(tags) if tags else None,
        )

        try:
            await self.store.add(job)
        except Exception as e:
            logger.error(
                "job_enqueue_failed",
                job_id=job.id,
                job_type=job.type,
                error=str(e),
                error_type=type(e).__name__,
                source="queue",
            )
            raise EnqueueError(
                f"Failed to enqueue job {job.id}: {e}", job.id, job.type
            ) from e

        logger.info(
            "job_enqueued",
            job_id=job.id,
            job_type=job.type,
            priority=job.priority.name,
            scheduled_for=job.scheduled_for,
            source="queue",
        )

        return job.id

    async def start_processing(self) -> None:
        """Start the worker loops.

        Calling this while already running only logs a warning. Loops left
        over from a non-waiting stop are awaited first, so at most
        ``concurrency`` loops ever run. The registry is frozen from here on.
        """
        if self._running:
            logger.warning("job_processing_already_running", source="queue")
            return

        if self._workers:
            # Loops from a stop(wait=False) must exit before a new pool starts
            logger.info("job_processing_waiting_for_previous_workers", source="queue")
            await self.join()

        self.registry.freeze()
        self._running = True
        self._workers = [start_worker(self, i) for i in range(self.concurrency)]

        logger.info(
            "job_processing_started",
            concurrency=self.concurrency,
            processors=self.registry.types(),
            source="queue",
        )

    async def stop_processing(self, wait: bool = True) -> None:
        """Stop claiming new jobs.

        In-flight executions are not interrupted.

        Args:
            wait: Wait for every worker loop to finish its current job and exit
        """
        self._running = False
        logger.info("job_processing_stopping", wait=wait, source="queue")

        if wait:
            await self.join()

    async def join(self) -> None:
        """Wait for all worker loops to exit."""
        workers, self._workers = self._workers, []
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)

    async def get_stats(self) -> dict[str, int]:
        """Return queue statistics.

        ``pending`` counts every job in the store (ready or delayed),
        ``processing`` the jobs claimed by this process, and
        ``completed``/``failed`` are counters for the life of this queue.
        """
        pending = await self.store.count()

        return {
            "pending": pending,
            "processing": len(self._processing),
            "completed": self.history.completed_count,
            "failed": self.history.failed_count,
        }

    async def cancel_job(self, job_id: str) -> bool:
        """Cancel a pending job.

        Returns:
            True if the job was removed from the store and marked cancelled,
            False if it is unknown, being processed or already finished
        """
        if job_id in self._processing:
            logger.warning("job_cancel_rejected", job_id=job_id, reason="processing", source="queue")
            return False

        job = await self.store.remove(job_id)
        if job is None:
            return False

        job.status = JobStatus.CANCELLED
        job.completed_at = self.clock()
        self.history.record(job)

        logger.info("job_cancelled", job_id=job.id, job_type=job.type, source="queue")
        return True

    async def get_job(self, job_id: str) -> Optional[Job]:
        """Look up a job that is processing, recently finished or pending."""
        job = self._processing.get(job_id) or self.history.get(job_id)
        if job is not None:
            return job
        return await self.store.get(job_id)

    # Worker loop API

    async def claim_next(self) -> Optional[Job]:
        """Claim the earliest ready job from the store."""
        return await self.store.claim(self.clock())

    def mark_claimed(self, job: Job) -> bool:
        """Track a claimed job. Returns False if it is already tracked."""
        if job.id in self._processing:
            return False
        self._processing[job.id] = job
        return True

    def release(self, job: Job) -> None:
        """Stop tracking a job, unless another loop has since claimed it."""
        if self._processing.get(job.id) is job:
            del self._processing[job.id]

    async def process_job(self, job: Job) -> None:
        """Execute one attempt of a claimed job.

        Processor errors never escape: they end in a retry or in FAILED.
        A job whose type has no processor is logged and dropped.
        """
        processor = self.registry.get(job.type)
        if processor is None:
            logger.error(
                "processor_not_found",
                job_id=job.id,
                job_type=job.type,
                source="queue",
            )
            return

        job.status = JobStatus.PROCESSING
        job.started_at = self.clock()
        job.attempts += 1

        logger.info(
            "job_processing",
            job_id=job.id,
            job_type=job.type,
            attempt=job.attempts,
            max_attempts=job.max_attempts,
            source="queue",
        )

        try:
            result = await _invoke(processor.process, job)
        except Exception as e:
            await self._handle_failure(job, e, processor)
            return

        job.status = JobStatus.COMPLETED
        job.completed_at = self.clock()
        job.result = result
        self.history.record(job)

        logger.info(
            "job_completed",
            job_id=job.id,
            job_type=job.type,
            attempts=job.attempts,
            duration_ms=job.completed_at - job.created_at,
            source="queue",
        )

        await self._call_hook(processor, "on_success", job, result)

    async def _handle_failure(self, job: Job, error: Exception, processor: Any) -> None:
        job.error = f"{type(error).__name__}: {error}"

        if self.retry_policy.should_retry(job):
            await self._retry_job(job)
            await self._call_hook(processor, "on_retry", job, error)
            return

        job.status = JobStatus.FAILED
        job.completed_at = self.clock()
        self.history.record(job)

        logger.error(
            "job_failed",
            job_id=job.id,
            job_type=job.type,
            attempts=job.attempts,
            error=job.error,
            source="queue",
        )

        await self._call_hook(processor, "on_failure", job, error)

    async def _retry_job(self, job: Job) -> None:
        delay = self.retry_policy.next_delay(job.attempts)

        job.status = JobStatus.PENDING
        job.scheduled_for = self.clock() + delay

        # Once back in the store the job may be claimed by another loop
        self.release(job)

        try:
            await self.store.add(job)
        except Exception as e:
            logger.error(
                "job_retry_enqueue_failed",
                job_id=job.id,
                job_type=job.type,
                error=str(e),
                source="queue",
            )
            raise

        logger.warning(
            "job_failed_will_retry",
            job_id=job.id,
            job_type=job.type,
            attempt=job.attempts,
            max_attempts=job.max_attempts,
            retry_delay_ms=delay,
            scheduled_for=job.scheduled_for,
            error=job.error,
            source="queue",
        )

    async def _call_hook(self, processor: Any, name: str, *args: Any) -> None:
        hook = getattr(processor, name, None)
        if hook is None:
            return

        try:
            await _invoke(hook, *args)
        except Exception as e:
            # Hooks never change the outcome of a job
            logger.error(
                "job_hook_failed",
                job_id=args[0].id,
                hook=name,
                error=str(e),
                error_type=type(e).__name__,
                source="queue",
                exc_info=True,
            )


async def _invoke(func: Callable, *args: Any) -> Any:
    """Await coroutine functions; run plain callables in a worker thread."""
    if inspect.iscoroutinefunction(func):
        return await func(*args)
    return await asyncio.to_thread(func, *args)
