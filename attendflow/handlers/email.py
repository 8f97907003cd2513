from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from attendflow.errors import HandlerError
from attendflow.mailer import EmailTransport
from attendflow.schemas.payloads import EmailSendPayload, decode_payload
from attendflow.stores import EmailNotificationStore, UserStore
from attendflow.tasks.types import Task, TaskType
from attendflow.worker.registry import TaskContext

logger = logging.getLogger(__name__)

# (user_id, subject, body) -> id of the queued email; raises EnqueueError.
EmailDispatcher = Callable[[int, str, str], Awaitable[Any]]


async def dispatch_email_quietly(
    dispatcher: EmailDispatcher | None,
    *,
    user_id: int,
    subject: str,
    body: str,
) -> None:
    """Fire-and-forget email side effect of a notification handler."""

    if dispatcher is None:
        logger.info("email dispatch not configured, skipping user_id=%s subject=%r", user_id, subject)
        return
    try:
        await dispatcher(user_id, subject, body)
    except Exception:
        logger.exception("failed to queue email user_id=%s subject=%r", user_id, subject)


class EmailSendHandler:
    """Deliver one EmailNotification and record the outcome on it.

    A send failure is recorded as `failed` and the task completes normally:
    failed emails are kept for audit, not redelivered. Records that are
    already sent or failed are never sent again.
    """

    task_type = TaskType.EMAIL_SEND

    def __init__(
        self,
        emails: EmailNotificationStore,
        users: UserStore,
        transport: EmailTransport,
    ) -> None:
        self._emails = emails
        self._users = users
        self._transport = transport

    async def __call__(self, ctx: TaskContext, task: Task) -> None:
        payload = decode_payload(task, EmailSendPayload)
        record = await self._emails.find_by_id(payload.email_notification_id)
        if record is None:
            raise HandlerError(f"email notification {payload.email_notification_id} not found")
        if record.is_terminal:
            logger.info(
                "email already %s, not sending again email_notification_id=%s",
                record.status.value,
                record.id,
            )
            return

        user = await self._users.find_by_id(record.user_id)
        if user is None:
            raise HandlerError(f"user {record.user_id} not found for email notification {record.id}")

        try:
            await self._transport.send(user.email, record.subject, record.body)
        except Exception as exc:
            logger.warning("email send failed email_notification_id=%s error=%s", record.id, exc)
            await self._emails.mark_failed(record.id, error=str(exc))
            return

        await self._emails.mark_sent(record.id, sent_at=datetime.now(timezone.utc))
        logger.info("email sent email_notification_id=%s user_id=%s", record.id, record.user_id)
