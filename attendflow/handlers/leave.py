from __future__ import annotations

import logging

from attendflow.errors import HandlerError
from attendflow.schemas.payloads import LeaveStatusUpdatePayload, decode_payload
from attendflow.stores import NotificationStore
from attendflow.tasks.types import Task, TaskType
from attendflow.worker.registry import TaskContext

logger = logging.getLogger(__name__)


class LeaveStatusUpdateHandler:
    """One `leave_status` notification for the student whose leave changed.

    Redelivery creates a second row; duplicates are accepted.
    """

    task_type = TaskType.LEAVE_STATUS_UPDATE

    def __init__(self, notifications: NotificationStore) -> None:
        self._notifications = notifications

    async def __call__(self, ctx: TaskContext, task: Task) -> None:
        payload = decode_payload(task, LeaveStatusUpdatePayload)
        message = f"Your leave request has been {payload.status}. {payload.remarks}".strip()

        try:
            notification = await self._notifications.create(
                user_id=payload.student_id,
                type="leave_status",
                title="Leave Request Update",
                message=message,
            )
        except Exception as exc:
            raise HandlerError(f"failed to create leave status notification: {exc}") from exc

        logger.info(
            "leave status notification created notification_id=%s student_id=%s leave_id=%s status=%s",
            notification.id,
            payload.student_id,
            payload.leave_id,
            payload.status,
        )
