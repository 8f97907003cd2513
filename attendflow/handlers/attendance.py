from __future__ import annotations

import logging

from attendflow.errors import HandlerError
from attendflow.schemas.payloads import AttendancePayload, decode_payload
from attendflow.stores import NotificationStore
from attendflow.tasks.types import Task, TaskType
from attendflow.worker.registry import TaskContext

from .email import EmailDispatcher, dispatch_email_quietly

logger = logging.getLogger(__name__)


class AttendanceMarkedHandler:
    task_type = TaskType.ATTENDANCE_MARKED

    def __init__(self, notifications: NotificationStore, *, email_dispatcher: EmailDispatcher | None = None) -> None:
        self._notifications = notifications
        self._email_dispatcher = email_dispatcher

    async def __call__(self, ctx: TaskContext, task: Task) -> None:
        payload = decode_payload(task, AttendancePayload)
        status = "present" if payload.present else "absent"
        day = payload.date.strftime("%Y-%m-%d")

        try:
            notification = await self._notifications.create(
                user_id=payload.student_id,
                type="attendance",
                title="Attendance Update",
                message=f"Your attendance has been marked as {status} for {day} by {payload.marked_by}",
            )
        except Exception as exc:
            raise HandlerError(f"failed to create attendance notification: {exc}") from exc

        logger.info(
            "attendance notification created notification_id=%s student_id=%s date=%s status=%s",
            notification.id,
            payload.student_id,
            day,
            status,
        )

        if not payload.present:
            await dispatch_email_quietly(
                self._email_dispatcher,
                user_id=payload.student_id,
                subject=f"Absence recorded for {day}",
                body=f"You were marked absent on {day} by {payload.marked_by}.",
            )
