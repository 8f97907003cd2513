from __future__ import annotations

import base64
import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

DEFAULT_QUEUE = "default"
REPORTS_QUEUE = "reports"
EMAIL_QUEUE = "email"

DEFAULT_MAX_RETRY = 25


class TaskType(str, Enum):
    """Stable task type identifiers; they travel on the wire."""

    LEAVE_STATUS_UPDATE = "leave:status_update"
    ATTENDANCE_MARKED = "attendance:marked"
    REMINDER_EMAIL = "email:reminder"
    EMAIL_SEND = "email:send"
    ABSENTEE_REPORT = "report:absentee"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class Task:
    """A unit of deferred work.

    `type` is kept as a plain string so that a message carrying a type this
    process does not know can still be represented, and dead-lettered.
    """

    id: str
    type: str
    payload: bytes
    queue: str = DEFAULT_QUEUE
    max_retry: int = DEFAULT_MAX_RETRY
    retried: int = 0
    scheduled_at: datetime | None = None
    enqueued_at: datetime = field(default_factory=_utcnow)
    last_error: str | None = None

    @classmethod
    def new(
        cls,
        task_type: TaskType | str,
        payload: bytes,
        *,
        queue: str = DEFAULT_QUEUE,
        max_retry: int = DEFAULT_MAX_RETRY,
        scheduled_at: datetime | None = None,
    ) -> Task:
        if max_retry < 0:
            raise ValueError("max_retry must be >= 0")
        kind = task_type.value if isinstance(task_type, TaskType) else str(task_type)
        return cls(
            id=uuid.uuid4().hex,
            type=kind,
            payload=payload,
            queue=queue,
            max_retry=max_retry,
            scheduled_at=scheduled_at,
        )

    def retry_of(self, *, error: str, scheduled_at: datetime) -> Task:
        return replace(self, retried=self.retried + 1, scheduled_at=scheduled_at, last_error=error)

    def reset(self) -> Task:
        """Fresh retry budget, used when an operator requeues a dead letter."""
        return replace(self, retried=0, scheduled_at=None, last_error=None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "payload": base64.b64encode(self.payload).decode("ascii"),
            "queue": self.queue,
            "max_retry": self.max_retry,
            "retried": self.retried,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "enqueued_at": self.enqueued_at.isoformat(),
            "last_error": self.last_error,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        return cls(
            id=data["id"],
            type=data["type"],
            payload=base64.b64decode(data.get("payload") or ""),
            queue=data.get("queue") or DEFAULT_QUEUE,
            max_retry=int(data.get("max_retry", DEFAULT_MAX_RETRY)),
            retried=int(data.get("retried", 0)),
            scheduled_at=_parse_dt(data.get("scheduled_at")),
            enqueued_at=_parse_dt(data.get("enqueued_at")) or _utcnow(),
            last_error=data.get("last_error"),
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> Task:
        return cls.from_dict(json.loads(raw))


@dataclass(frozen=True)
class DeadLetter:
    task: Task
    error: str
    failed_at: datetime = field(default_factory=_utcnow)

    def to_json(self) -> str:
        return json.dumps(
            {"task": self.task.to_dict(), "error": self.error, "failed_at": self.failed_at.isoformat()},
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> DeadLetter:
        data = json.loads(raw)
        return cls(
            task=Task.from_dict(data["task"]),
            error=data["error"],
            failed_at=datetime.fromisoformat(data["failed_at"]),
        )
