import asyncio
import structlog
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from jobrunner.jobs.queue import JobQueue

logger = structlog.get_logger()


def start_worker(queue: "JobQueue", worker_id: int) -> asyncio.Task:
    """Start one worker loop as a background asyncio task.

    The loop keeps claiming jobs from the queue's store until the queue's
    running flag is cleared. Blocking processors run in a thread pool (see
    JobQueue.process_job), keeping the event loop free for the other
    workers.

    Args:
        queue: JobQueue instance to pull jobs from
        worker_id: Index of the worker, used in logs

    Returns:
        asyncio.Task that finishes once the queue stops
    """
    task = asyncio.create_task(
        _worker_loop(queue, worker_id), name=f"job-worker-{worker_id}"
    )
    logger.info("worker_started", worker_id=worker_id, source="worker")
    return task


async def _worker_loop(queue: "JobQueue", worker_id: int) -> None:
    """Internal worker loop that processes jobs.

    This loop:
    1. Claims the earliest ready job, sleeping poll_interval when none is ready
    2. Skips a job already claimed by another loop of this process
    3. Executes the job and releases its id whatever the outcome
    4. Backs off error_backoff seconds after an infrastructure error

    Note:
        The claimed-job map is only touched here, on the event loop, so it
        needs no lock.
    """
    logger.info(
        "worker_loop_started",
        worker_id=worker_id,
        poll_interval=queue.poll_interval,
        source="worker",
    )

    while queue.is_running:
        try:
            job = await queue.claim_next()

            if job is None:
                # No jobs ready, wait before polling again
                await asyncio.sleep(queue.poll_interval)
                continue

            if not queue.mark_claimed(job):
                logger.warning(
                    "worker_job_already_processing",
                    worker_id=worker_id,
                    job_id=job.id,
                    source="worker",
                )
                continue

            try:
                await queue.process_job(job)
            finally:
                queue.release(job)

        except asyncio.CancelledError:
            logger.info("worker_shutting_down", worker_id=worker_id, source="worker")
            raise

        except Exception as loop_error:
            # Store unreachable, undecodable record or failed retry enqueue
            logger.error(
                "worker_loop_error",
                worker_id=worker_id,
                error=str(loop_error),
                error_type=type(loop_error).__name__,
                source="worker",
                exc_info=True,
            )

            # Wait a bit before continuing to avoid tight error loops
            await asyncio.sleep(queue.error_backoff)

    logger.info("worker_stopped", worker_id=worker_id, source="worker")
