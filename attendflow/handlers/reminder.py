from __future__ import annotations

import logging

from attendflow.errors import HandlerError
from attendflow.stores import LeaveStore, NotificationStore
from attendflow.tasks.types import Task, TaskType
from attendflow.worker.registry import TaskContext

from .email import EmailDispatcher, dispatch_email_quietly

logger = logging.getLogger(__name__)


class PendingLeaveReminderHandler:
    """Remind every student whose leave request is still pending.

    One bad record must not abort the run: a failure for one leave is logged
    and that leave skipped. Only failing to list the pending leaves fails the
    task as a whole.
    """

    task_type = TaskType.REMINDER_EMAIL

    def __init__(
        self,
        notifications: NotificationStore,
        leaves: LeaveStore,
        *,
        email_dispatcher: EmailDispatcher | None = None,
    ) -> None:
        self._notifications = notifications
        self._leaves = leaves
        self._email_dispatcher = email_dispatcher

    async def __call__(self, ctx: TaskContext, task: Task) -> None:
        try:
            pending = await self._leaves.find_pending()
        except Exception as exc:
            raise HandlerError(f"failed to fetch pending leaves: {exc}") from exc

        created = 0
        for leave in pending:
            message = (
                f"Your leave request from {leave.start_date:%Y-%m-%d} to "
                f"{leave.end_date:%Y-%m-%d} is still pending approval"
            )
            try:
                await self._notifications.create(
                    user_id=leave.student_id,
                    type="reminder",
                    title="Leave Request Reminder",
                    message=message,
                )
            except Exception:
                logger.exception("failed to create reminder notification leave_id=%s", leave.id)
                continue

            created += 1
            await dispatch_email_quietly(
                self._email_dispatcher,
                user_id=leave.student_id,
                subject="Leave Request Reminder",
                body=message,
            )

        logger.info("leave reminders done pending=%s created=%s failed=%s", len(pending), created, len(pending) - created)
