"""Exceptions raised by the job engine."""


class JobRunnerError(Exception):
    """Base exception for the job engine."""


class EnqueueError(JobRunnerError):
    """Raised when a job could not be accepted by the store."""

    def __init__(self, message: str, job_id: str, job_type: str):
        self.job_id = job_id
        self.job_type = job_type
        super().__init__(message)


class JobDecodeError(JobRunnerError):
    """Raised when a stored job record cannot be deserialized."""
