"""In-memory collaborators for handler, pool and service tests."""

from __future__ import annotations

import asyncio
import itertools
from datetime import date, datetime, timedelta, timezone

from attendflow.schemas import (
    EmailNotificationRead,
    EmailStatus,
    NotificationRead,
    PendingLeaveRead,
    UserRead,
)
from attendflow.services import Stores
from attendflow.tasks.types import Task, TaskType
from attendflow.worker import TaskContext


def _now() -> datetime:
    return datetime.now(timezone.utc)


class FakeNotificationStore:
    def __init__(self, *, fail_for_users: set[int] | None = None) -> None:
        self.rows: list[NotificationRead] = []
        self.fail_for_users = set(fail_for_users or ())
        self._ids = itertools.count(1)

    async def create(self, *, user_id: int, type: str, title: str, message: str) -> NotificationRead:
        if user_id in self.fail_for_users:
            raise RuntimeError(f"simulated store failure for user {user_id}")
        row = NotificationRead(
            id=next(self._ids),
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            is_read=False,
            created_at=_now(),
        )
        self.rows.append(row)
        return row

    async def find_by_user(self, user_id: int, *, limit: int = 20, offset: int = 0) -> list[NotificationRead]:
        mine = [r for r in reversed(self.rows) if r.user_id == user_id]
        return mine[offset : offset + limit]

    async def count_by_user(self, user_id: int) -> int:
        return sum(1 for r in self.rows if r.user_id == user_id)

    async def count_unread(self, user_id: int) -> int:
        return sum(1 for r in self.rows if r.user_id == user_id and not r.is_read)

    async def mark_read(self, notification_id: int, *, user_id: int) -> NotificationRead | None:
        for i, row in enumerate(self.rows):
            if row.id == notification_id and row.user_id == user_id:
                self.rows[i] = row.model_copy(update={"is_read": True})
                return self.rows[i]
        return None


class FakeEmailNotificationStore:
    def __init__(self) -> None:
        self.rows: dict[int, EmailNotificationRead] = {}
        self._ids = itertools.count(1)

    async def create(self, *, user_id: int, subject: str, body: str) -> EmailNotificationRead:
        row = EmailNotificationRead(
            id=next(self._ids),
            user_id=user_id,
            subject=subject,
            body=body,
            status=EmailStatus.PENDING,
            created_at=_now(),
        )
        self.rows[row.id] = row
        return row

    async def find_by_id(self, email_notification_id: int) -> EmailNotificationRead | None:
        return self.rows.get(email_notification_id)

    def _finish(self, email_notification_id: int, **changes) -> bool:
        row = self.rows.get(email_notification_id)
        if row is None or row.status is not EmailStatus.PENDING:
            return False
        self.rows[email_notification_id] = row.model_copy(update=changes)
        return True

    async def mark_sent(self, email_notification_id: int, *, sent_at: datetime) -> bool:
        return self._finish(email_notification_id, status=EmailStatus.SENT, sent_at=sent_at)

    async def mark_failed(self, email_notification_id: int, *, error: str) -> bool:
        return self._finish(email_notification_id, status=EmailStatus.FAILED, error=error)


class FakeUserStore:
    def __init__(self, users: list[UserRead] | None = None) -> None:
        self.users = {u.id: u for u in users or ()}

    async def find_by_id(self, user_id: int) -> UserRead | None:
        return self.users.get(user_id)


class FakeLeaveStore:
    def __init__(self, pending: list[PendingLeaveRead] | None = None, *, fail: bool = False) -> None:
        self.pending = list(pending or ())
        self.fail = fail

    async def find_pending(self) -> list[PendingLeaveRead]:
        if self.fail:
            raise RuntimeError("simulated leave store outage")
        return list(self.pending)


class FakeAttendanceStore:
    def __init__(self, counts: dict[int, int] | None = None) -> None:
        self.counts = dict(counts or {})
        self.calls: list[tuple[date, date]] = []

    async def absence_counts(self, start: date, end: date) -> dict[int, int]:
        self.calls.append((start, end))
        return dict(self.counts)


class RecordingTransport:
    def __init__(self, *, fail_with: Exception | None = None) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail_with = fail_with

    async def send(self, to: str, subject: str, body: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((to, subject, body))


def make_stores(**overrides) -> Stores:
    values = {
        "notifications": FakeNotificationStore(),
        "emails": FakeEmailNotificationStore(),
        "users": FakeUserStore(),
        "leaves": FakeLeaveStore(),
        "attendance": FakeAttendanceStore(),
    }
    values.update(overrides)
    return Stores(**values)


def make_task(task_type: TaskType | str, payload: bytes = b"", **kwargs) -> Task:
    return Task.new(task_type, payload, **kwargs)


def make_ctx(task: Task) -> TaskContext:
    return TaskContext(
        task_id=task.id,
        task_type=TaskType(task.type),
        queue=task.queue,
        attempt=task.retried + 1,
        deadline=_now() + timedelta(seconds=30),
        enqueued_at=task.enqueued_at,
    )


def pending_leave(leave_id: int, student_id: int) -> PendingLeaveRead:
    return PendingLeaveRead(
        id=leave_id,
        student_id=student_id,
        start_date=datetime(2024, 3, 4, tzinfo=timezone.utc),
        end_date=datetime(2024, 3, 6, tzinfo=timezone.utc),
    )


async def wait_until(predicate, timeout: float = 3.0, interval: float = 0.01) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)
