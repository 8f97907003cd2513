from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from attendflow.errors import EnqueueError
from attendflow.schemas import AttendancePayload, LeaveStatusUpdatePayload

if TYPE_CHECKING:
    from attendflow.services import NotificationService

logger = logging.getLogger(__name__)


async def emit_leave_status_notification(
    service: NotificationService,
    payload: LeaveStatusUpdatePayload,
) -> str | None:
    """Queue a leave status notification from a request handler.

    Must be non-fatal: failing to enqueue must not fail the leave approval
    that triggered it. Returns the task id, or None when the enqueue failed.
    """

    try:
        return await service.queue_leave_status_notification(payload)
    except EnqueueError:
        logger.exception(
            "Failed to queue leave status notification (leave_id=%s, student_id=%s)",
            payload.leave_id,
            payload.student_id,
        )
        return None


async def emit_attendance_notification(
    service: NotificationService,
    payload: AttendancePayload,
) -> str | None:
    """Same policy as emit_leave_status_notification, for attendance marking."""

    try:
        return await service.queue_attendance_notification(payload)
    except EnqueueError:
        logger.exception(
            "Failed to queue attendance notification (student_id=%s, date=%s)",
            payload.student_id,
            payload.date,
        )
        return None
