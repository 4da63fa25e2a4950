"""Job queue system for background task processing."""

from .models import Job, JobPriority, JobStatus, JobType
from .queue import JobQueue
from .registry import Processor, ProcessorRegistry
from .retry import RetryPolicy
from .store import DelayStore, MemoryDelayStore, RedisDelayStore
from .worker import start_worker
from .processors import WebhookNotificationProcessor

__all__ = [
    "Job",
    "JobPriority",
    "JobStatus",
    "JobType",
    "JobQueue",
    "Processor",
    "ProcessorRegistry",
    "RetryPolicy",
    "DelayStore",
    "MemoryDelayStore",
    "RedisDelayStore",
    "start_worker",
    "WebhookNotificationProcessor",
]
