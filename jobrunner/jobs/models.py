import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Optional

from jobrunner.errors import JobDecodeError

# Bump when the serialized layout changes incompatibly.
SCHEMA_VERSION = 1

_REQUIRED_FIELDS = ("id", "type", "created_at")


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_job_id() -> str:
    """Return a new unique job identifier."""
    return f"job_{uuid.uuid4().hex}"


class JobType(str, Enum):
    """Well-known job types."""

    SEND_EMAIL = "send_email"
    SEND_APPOINTMENT_REMINDER = "send_appointment_reminder"
    SEND_REVIEW_REQUEST = "send_review_request"
    PROCESS_IMAGE = "process_image"
    GENERATE_THUMBNAIL = "generate_thumbnail"
    CLEANUP_EXPIRED_TOKENS = "cleanup_expired_tokens"
    SYNC_EXTERNAL_DATA = "sync_external_data"
    SEND_NOTIFICATION = "send_notification"
    UPDATE_ANALYTICS = "update_analytics"
    BACKUP_DATABASE = "backup_database"


class JobPriority(IntEnum):
    """Advisory priority. It does not reorder the store."""

    LOW = 0
    NORMAL = 1
    HIGH = 2
    URGENT = 3


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


@dataclass
class Job:
    """Represents a unit of deferred work.

    The payload is opaque to the engine: it is stored and handed to the
    processor unmodified. All timestamps are epoch milliseconds.
    """

    id: str
    type: str
    payload: Any = None
    priority: JobPriority = JobPriority.NORMAL
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    created_at: int = field(default_factory=now_ms)
    scheduled_for: Optional[int] = None
    started_at: Optional[int] = None
    completed_at: Optional[int] = None
    error: Optional[str] = None
    result: Any = None
    tags: Optional[list[str]] = None

    @property
    def ready_at(self) -> int:
        """Score used by the store: the time the job becomes claimable."""
        return self.scheduled_for if self.scheduled_for is not None else self.created_at

    def to_dict(self) -> dict:
        """Return the versioned wire representation."""
        return {
            "version": SCHEMA_VERSION,
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "priority": int(self.priority),
            "status": self.status.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "created_at": self.created_at,
            "scheduled_for": self.scheduled_for,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error": self.error,
            "result": self.result,
            "tags": self.tags,
        }

    def to_json(self) -> str:
        """Serialize job to JSON for storage.

        Raises:
            TypeError: If the payload or result is not JSON-serializable
        """
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Job":
        version = data.get("version")
        if version != SCHEMA_VERSION:
            raise JobDecodeError(f"Unsupported job schema version: {version!r}")

        missing = [name for name in _REQUIRED_FIELDS if data.get(name) is None]
        if missing:
            raise JobDecodeError(f"Job record missing fields: {', '.join(missing)}")

        try:
            return cls(
                id=data["id"],
                type=data["type"],
                payload=data.get("payload"),
                priority=JobPriority(data.get("priority", JobPriority.NORMAL)),
                status=JobStatus(data.get("status", JobStatus.PENDING.value)),
                attempts=int(data.get("attempts", 0)),
                max_attempts=int(data.get("max_attempts", 3)),
                created_at=int(data["created_at"]),
                scheduled_for=_optional_int(data.get("scheduled_for")),
                started_at=_optional_int(data.get("started_at")),
                completed_at=_optional_int(data.get("completed_at")),
                error=data.get("error"),
                result=data.get("result"),
                tags=data.get("tags"),
            )
        except (TypeError, ValueError) as e:
            raise JobDecodeError(f"Invalid job record: {e}") from e

    @classmethod
    def from_json(cls, raw: str) -> "Job":
        """Deserialize a job from its stored JSON."""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise JobDecodeError(f"Job record is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise JobDecodeError("Job record is not a JSON object")

        return cls.from_dict(data)


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)
