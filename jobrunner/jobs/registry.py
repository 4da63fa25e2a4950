from abc import ABC, abstractmethod
from typing import Any, Optional

from jobrunner.jobs.models import Job


class Processor(ABC):
    """Base class for job processors.

    Subclasses implement ``process``. Either plain or ``async def`` methods
    are accepted: coroutine functions are awaited on the event loop, plain
    functions run in a worker thread.

    The hooks are optional and default to no-ops.
    """

    @abstractmethod
    def process(self, job: Job) -> Any:
        """Execute the job and return its result, or raise to fail it."""

    async def on_success(self, job: Job, result: Any) -> None:
        pass

    async def on_failure(self, job: Job, error: Exception) -> None:
        pass

    async def on_retry(self, job: Job, error: Exception) -> None:
        pass


class ProcessorRegistry:
    """Table of job type -> processor owned by a single JobQueue.

    The registry is frozen when processing starts, so every registration
    must happen before ``JobQueue.start_processing``.
    """

    def __init__(self) -> None:
        self._processors: dict[str, Any] = {}
        self._frozen = False

    def register(self, job_type: str, processor: Any) -> None:
        """Register a processor for a job type. Last registration wins.

        Raises:
            RuntimeError: If the registry is frozen
            TypeError: If the processor has no callable ``process``
        """
        job_type = job_type_key(job_type)
        if self._frozen:
            raise RuntimeError(
                f"Cannot register processor for '{job_type}': "
                "registry is frozen once processing has started"
            )
        if not callable(getattr(processor, "process", None)):
            raise TypeError(f"Processor for '{job_type}' must define process(job)")
        self._processors[job_type] = processor

    def get(self, job_type: str) -> Optional[Any]:
        """Return the processor for a job type, or None."""
        return self._processors.get(job_type_key(job_type))

    def types(self) -> list[str]:
        """List all registered job types."""
        return list(self._processors.keys())

    def freeze(self) -> None:
        self._frozen = True

    def is_frozen(self) -> bool:
        return self._frozen

    def __contains__(self, job_type: str) -> bool:
        return job_type_key(job_type) in self._processors

    def __len__(self) -> int:
        return len(self._processors)


def job_type_key(job_type: Any) -> str:
    """Normalize a job type given as a string or an Enum member."""
    return job_type.value if hasattr(job_type, "value") else str(job_type)
