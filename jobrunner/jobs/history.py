from collections import OrderedDict
from typing import Optional

from jobrunner.jobs.models import Job, JobStatus


class JobHistory:
    """Bounded in-memory record of finished jobs.

    Keeps the most recent ``keep_completed`` completed jobs and the most
    recent ``keep_failed`` failed or cancelled jobs. The completed/failed
    counters cover the lifetime of the process and are not trimmed.
    """

    def __init__(self, keep_completed: int = 100, keep_failed: int = 50) -> None:
        self.keep_completed = keep_completed
        self.keep_failed = keep_failed
        self.completed_count = 0
        self.failed_count = 0
        self._completed: OrderedDict[str, Job] = OrderedDict()
        self._failed: OrderedDict[str, Job] = OrderedDict()

    def record(self, job: Job) -> None:
        """Record a job that reached a terminal status."""
        if job.status == JobStatus.COMPLETED:
            self.completed_count += 1
            _push(self._completed, job, self.keep_completed)
        elif job.status == JobStatus.FAILED:
            self.failed_count += 1
            _push(self._failed, job, self.keep_failed)
        elif job.status == JobStatus.CANCELLED:
            _push(self._failed, job, self.keep_failed)
        else:
            raise ValueError(f"Job {job.id} is not finished: {job.status.value}")

    def get(self, job_id: str) -> Optional[Job]:
        return self._completed.get(job_id) or self._failed.get(job_id)

    def recent(self, status: JobStatus) -> list[Job]:
        """Return retained jobs with the given status, oldest first."""
        source = self._completed if status == JobStatus.COMPLETED else self._failed
        return [job for job in source.values() if job.status == status]


def _push(records: OrderedDict, job: Job, limit: int) -> None:
    records[job.id] = job
    records.move_to_end(job.id)
    while len(records) > max(limit, 0):
        records.popitem(last=False)
