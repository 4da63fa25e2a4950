from dataclasses import dataclass

from jobrunner.jobs.models import Job


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for failed jobs.

    The delay before the next attempt is ``base_delay * 2 ** (attempts - 1)``
    where ``attempts`` already counts the attempt that just failed, so the
    first retry waits ``base_delay``, the second ``2 * base_delay`` and so on.
    """

    base_delay: int = 5000  # milliseconds

    def should_retry(self, job: Job) -> bool:
        """Return whether the job still has attempts left in its budget."""
        return job.attempts < job.max_attempts

    def next_delay(self, attempts: int) -> int:
        """Return the backoff in milliseconds after ``attempts`` attempts.

        Raises:
            ValueError: If attempts is less than 1
        """
        if attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {attempts}")
        return self.base_delay * 2 ** (attempts - 1)
