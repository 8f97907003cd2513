from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from attendflow.broker import Broker, BrokerStats
from attendflow.config import Settings
from attendflow.errors import EnqueueError
from attendflow.handlers import (
    AbsenteeReportHandler,
    AttendanceMarkedHandler,
    EmailSendHandler,
    LeaveStatusUpdateHandler,
    PendingLeaveReminderHandler,
)
from attendflow.mailer import EmailTransport
from attendflow.scheduler import CronEntry, Scheduler, register_builtin_entries
from attendflow.schemas import (
    AttendancePayload,
    EmailSendPayload,
    LeaveStatusUpdatePayload,
    NotificationListResponse,
    NotificationRead,
)
from attendflow.stores import AttendanceStore, EmailNotificationStore, LeaveStore, NotificationStore, UserStore
from attendflow.tasks.client import TaskClient
from attendflow.tasks.types import (
    DEFAULT_MAX_RETRY,
    DEFAULT_QUEUE,
    EMAIL_QUEUE,
    REPORTS_QUEUE,
    TaskType,
)
from attendflow.worker import Handler, HandlerRegistry, RetryPolicy, WorkerPool

logger = logging.getLogger(__name__)

MAIN_POOL_TASK_TYPES = (
    TaskType.LEAVE_STATUS_UPDATE,
    TaskType.ATTENDANCE_MARKED,
    TaskType.REMINDER_EMAIL,
    TaskType.ABSENTEE_REPORT,
)


@dataclass
class Stores:
    notifications: NotificationStore
    emails: EmailNotificationStore
    users: UserStore
    leaves: LeaveStore
    attendance: AttendanceStore


class NotificationService:
    """Owns the broker client, both worker pools, the scheduler and the handlers.

    Build exactly one per process at startup and pass it to whatever needs it
    (request handlers, shutdown hooks). Producer methods return once the
    broker accepted the task, not once it was processed.
    """

    def __init__(
        self,
        *,
        broker: Broker,
        stores: Stores,
        transport: EmailTransport,
        settings: Settings,
    ) -> None:
        self._settings = settings
        self._broker = broker
        self._stores = stores
        self.client = TaskClient(broker)

        self.registry = HandlerRegistry()
        self.registry.register(TaskType.LEAVE_STATUS_UPDATE, LeaveStatusUpdateHandler(stores.notifications))
        self.registry.register(
            TaskType.ATTENDANCE_MARKED,
            AttendanceMarkedHandler(stores.notifications, email_dispatcher=self._email_dispatcher()),
        )
        self.registry.register(
            TaskType.REMINDER_EMAIL,
            PendingLeaveReminderHandler(stores.notifications, stores.leaves, email_dispatcher=self._email_dispatcher()),
        )
        self.registry.register(TaskType.ABSENTEE_REPORT, AbsenteeReportHandler(stores.notifications, stores.attendance))

        self.email_registry = HandlerRegistry()
        self.email_registry.register(TaskType.EMAIL_SEND, EmailSendHandler(stores.emails, stores.users, transport))

        retry_policy = RetryPolicy(
            initial_delay=settings.retry_initial_delay_seconds,
            multiplier=settings.retry_backoff_multiplier,
            max_delay=settings.retry_max_delay_seconds,
        )
        self.worker_pool = WorkerPool(
            broker,
            self.registry,
            queues=[DEFAULT_QUEUE, REPORTS_QUEUE],
            concurrency=settings.worker_concurrency,
            retry_policy=retry_policy,
            task_timeout=settings.task_timeout_seconds,
            shutdown_grace=settings.shutdown_grace_seconds,
            poll_interval=settings.poll_interval_seconds,
            name="default",
        )
        self.email_pool = WorkerPool(
            broker,
            self.email_registry,
            queues=[EMAIL_QUEUE],
            concurrency=settings.email_worker_concurrency,
            retry_policy=retry_policy,
            task_timeout=settings.task_timeout_seconds,
            shutdown_grace=settings.shutdown_grace_seconds,
            poll_interval=settings.poll_interval_seconds,
            name="email",
        )

        self.scheduler = Scheduler(self._enqueue_entry, timezone_=settings.cron_timezone)
        register_builtin_entries(self.scheduler, settings)

        self._runners: list[asyncio.Task] = []
        self._started = False
        self._stopped = False
        self._stop_lock = asyncio.Lock()

    def _email_dispatcher(self):
        if not self._settings.email_worker_enabled:
            return None
        return self.queue_email_notification

    # -- producer API -----------------------------------------------------

    async def queue_leave_status_notification(self, payload: LeaveStatusUpdatePayload) -> str:
        return await self.client.enqueue(
            TaskType.LEAVE_STATUS_UPDATE, payload, max_retry=self._settings.task_max_retry
        )

    async def queue_attendance_notification(self, payload: AttendancePayload) -> str:
        return await self.client.enqueue(
            TaskType.ATTENDANCE_MARKED, payload, max_retry=self._settings.task_max_retry
        )

    async def queue_email_notification(self, user_id: int, subject: str, body: str) -> str:
        """Record a pending EmailNotification and hand it to the email pool.

        If the task cannot be queued the record is marked failed, so no row is
        left pending with nothing to send it.
        """

        record = await self._stores.emails.create(user_id=user_id, subject=subject, body=body)
        try:
            return await self.client.enqueue(
                TaskType.EMAIL_SEND,
                EmailSendPayload(email_notification_id=record.id),
                queue=EMAIL_QUEUE,
                max_retry=self._settings.task_max_retry,
            )
        except EnqueueError as exc:
            try:
                await self._stores.emails.mark_failed(record.id, error=str(exc))
            except Exception:
                logger.exception("could not mark unqueued email failed email_notification_id=%s", record.id)
            raise

    async def enqueue(
        self,
        task_type: TaskType | str,
        payload: BaseModel | dict[str, Any] | None = None,
        *,
        queue: str = DEFAULT_QUEUE,
        max_retry: int = DEFAULT_MAX_RETRY,
        schedule_cron: str | None = None,
    ) -> str:
        """Generic producer.

        With `schedule_cron` the task becomes a recurring scheduler entry and
        the entry id is returned instead of a task id.
        """

        if schedule_cron is not None:
            data = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else payload
            entry = self.scheduler.register(schedule_cron, TaskType(task_type), data, queue=queue, max_retry=max_retry)
            return entry.id
        return await self.client.enqueue(task_type, payload, queue=queue, max_retry=max_retry)

    async def _enqueue_entry(self, entry: CronEntry) -> str:
        return await self.client.enqueue(entry.task_type, entry.payload, queue=entry.queue, max_retry=entry.max_retry)

    def register_handler(self, task_type: TaskType | str, handler: Handler) -> None:
        """Register a handler on the main pool. Each task type takes exactly one."""

        if self._started:
            raise RuntimeError("handlers must be registered before start()")
        self.registry.register(task_type, handler)

    # -- lifecycle --------------------------------------------------------

    async def start(self) -> None:
        """Launch the worker pools and the scheduler as background tasks."""

        if self._stopped:
            raise RuntimeError("notification service already stopped")
        if self._started:
            return
        self.registry.require(MAIN_POOL_TASK_TYPES)
        self._started = True

        self._runners.append(asyncio.create_task(self.worker_pool.run(), name="worker-pool"))
        if self._settings.email_worker_enabled:
            self._runners.append(asyncio.create_task(self.email_pool.run(), name="email-pool"))
        if self._settings.scheduler_enabled:
            self._runners.append(asyncio.create_task(self.scheduler.run(), name="scheduler"))
        logger.info(
            "notification service started email_worker=%s scheduler=%s",
            self._settings.email_worker_enabled,
            self._settings.scheduler_enabled,
        )

    async def stop(self) -> None:
        """Ordered shutdown: scheduler, workers (drained), then the broker.

        Safe to call more than once, and before start().
        """

        async with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True

            self.scheduler.stop()
            # Both pools drain within one shared grace period.
            await asyncio.gather(self.worker_pool.stop(), self.email_pool.stop())
            if self._runners:
                await asyncio.gather(*self._runners, return_exceptions=True)
            self._runners.clear()

            try:
                await self._broker.close()
            except Exception:
                logger.exception("failed to close broker")
            logger.info("notification service stopped")

    async def wait(self) -> None:
        """Block until every background runner has exited.

        Cancelling the caller leaves the runners alone.
        """

        if self._runners:
            await asyncio.wait(list(self._runners))

    # -- read side --------------------------------------------------------

    async def list_notifications(self, user_id: int, *, page: int = 1, limit: int = 20) -> NotificationListResponse:
        """One page of a user's notifications, newest first."""

        page = max(1, page)
        limit = max(1, min(limit, 100))
        total = await self._stores.notifications.count_by_user(user_id)
        items = await self._stores.notifications.find_by_user(user_id, limit=limit, offset=(page - 1) * limit)
        return NotificationListResponse(
            items=items,
            page=page,
            limit=limit,
            total=total,
            total_pages=(total + limit - 1) // limit,
        )

    async def mark_notification_read(self, notification_id: int, *, user_id: int) -> NotificationRead | None:
        return await self._stores.notifications.mark_read(notification_id, user_id=user_id)

    async def unread_count(self, user_id: int) -> int:
        return await self._stores.notifications.count_unread(user_id)

    # -- inspection -------------------------------------------------------

    async def queue_stats(self) -> tuple[BrokerStats, dict[str, dict[str, int]]]:
        broker_stats = await self._broker.stats([DEFAULT_QUEUE, REPORTS_QUEUE, EMAIL_QUEUE])
        workers = {
            self.worker_pool.name: self.worker_pool.stats(),
            self.email_pool.name: self.email_pool.stats(),
        }
        return broker_stats, workers

    async def dead_letters(self, limit: int = 100):
        return await self._broker.dead_letters(limit)

    async def requeue_dead_letter(self, task_id: str) -> bool:
        return await self._broker.requeue_dead_letter(task_id)
