from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from attendflow.errors import PayloadError
from attendflow.tasks.types import Task

TPayload = TypeVar("TPayload", bound=BaseModel)


class LeaveStatusUpdatePayload(BaseModel):
    leave_id: int
    student_id: int
    status: str
    approved_by: str | None = None
    remarks: str = ""


class AttendancePayload(BaseModel):
    student_id: int
    date: date
    present: bool
    marked_by: str

    @field_validator("date", mode="before")
    @classmethod
    def _calendar_day(cls, value: Any) -> Any:
        # Producers may send a full timestamp; only its calendar day matters.
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str) and "T" in value:
            return datetime.fromisoformat(value).date()
        return value


class EmailSendPayload(BaseModel):
    email_notification_id: int


class AbsenteeReportPayload(BaseModel):
    period_days: int = Field(7, ge=1, le=366)


def encode_payload(payload: BaseModel | dict[str, Any] | None) -> bytes:
    """Serialize a payload for the broker.

    Raises TypeError/ValueError when the value is not JSON-serializable.
    """

    if payload is None:
        return b""
    if isinstance(payload, BaseModel):
        return payload.model_dump_json().encode("utf-8")
    return json.dumps(payload).encode("utf-8")


def decode_payload(task: Task, model: type[TPayload]) -> TPayload:
    """Decode a task's payload; an empty payload means "all defaults"."""

    raw = task.payload or b"{}"
    try:
        return model.model_validate_json(raw)
    except ValidationError as exc:
        raise PayloadError(f"invalid {task.type} payload for task {task.id}: {exc}") from exc
