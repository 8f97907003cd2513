"""Collaborator interfaces the task handlers depend on.

The SQLAlchemy implementations live in `attendflow.crud`; tests substitute
in-memory fakes.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Protocol

from attendflow.schemas import EmailNotificationRead, NotificationRead, PendingLeaveRead, UserRead


class NotificationStore(Protocol):
    async def create(self, *, user_id: int, type: str, title: str, message: str) -> NotificationRead:
        ...

    async def find_by_user(self, user_id: int, *, limit: int = 20, offset: int = 0) -> list[NotificationRead]:
        """Newest first."""
        ...

    async def count_by_user(self, user_id: int) -> int:
        ...

    async def count_unread(self, user_id: int) -> int:
        ...

    async def mark_read(self, notification_id: int, *, user_id: int) -> NotificationRead | None:
        """None when the notification does not exist or belongs to someone else."""
        ...


class EmailNotificationStore(Protocol):
    async def create(self, *, user_id: int, subject: str, body: str) -> EmailNotificationRead:
        ...

    async def find_by_id(self, email_notification_id: int) -> EmailNotificationRead | None:
        ...

    async def mark_sent(self, email_notification_id: int, *, sent_at: datetime) -> bool:
        """Transition pending -> sent. Returns False if the record was already terminal."""
        ...

    async def mark_failed(self, email_notification_id: int, *, error: str) -> bool:
        """Transition pending -> failed. Returns False if the record was already terminal."""
        ...


class UserStore(Protocol):
    async def find_by_id(self, user_id: int) -> UserRead | None:
        ...


class LeaveStore(Protocol):
    async def find_pending(self) -> list[PendingLeaveRead]:
        ...


class AttendanceStore(Protocol):
    async def absence_counts(self, start: date, end: date) -> dict[int, int]:
        """Absent days per student id within [start, end]."""
        ...
