from __future__ import annotations

import logging
from datetime import timedelta

from attendflow.errors import HandlerError
from attendflow.schemas.payloads import AbsenteeReportPayload, decode_payload
from attendflow.stores import AttendanceStore, NotificationStore
from attendflow.tasks.types import Task, TaskType
from attendflow.worker.registry import TaskContext

logger = logging.getLogger(__name__)


class AbsenteeReportHandler:
    """Weekly absentee report: one notification per student with absences.

    The period ends on the day the task was enqueued, so a retry days later
    still reports on the same week. Per-student failures are isolated.
    """

    task_type = TaskType.ABSENTEE_REPORT

    def __init__(self, notifications: NotificationStore, attendance: AttendanceStore) -> None:
        self._notifications = notifications
        self._attendance = attendance

    async def __call__(self, ctx: TaskContext, task: Task) -> None:
        payload = decode_payload(task, AbsenteeReportPayload)
        end = ctx.enqueued_at.date()
        start = end - timedelta(days=payload.period_days - 1)

        try:
            counts = await self._attendance.absence_counts(start, end)
        except Exception as exc:
            raise HandlerError(f"failed to compute absence counts: {exc}") from exc

        reported = 0
        for student_id, absent_days in sorted(counts.items()):
            if absent_days <= 0:
                continue
            try:
                await self._notifications.create(
                    user_id=student_id,
                    type="absentee_report",
                    title="Attendance Report",
                    message=f"You were absent on {absent_days} day(s) between {start:%Y-%m-%d} and {end:%Y-%m-%d}",
                )
            except Exception:
                logger.exception("failed to create absentee report notification student_id=%s", student_id)
                continue
            reported += 1

        logger.info("absentee report done start=%s end=%s students=%s", start, end, reported)
