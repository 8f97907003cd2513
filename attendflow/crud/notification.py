from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from attendflow.models.notification import EmailNotification, Notification
from attendflow.schemas import EmailNotificationRead, EmailStatus, NotificationRead


class SqlNotificationStore:
    """Notification persistence; one session and commit per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, *, user_id: int, type: str, title: str, message: str) -> NotificationRead:
        async with self._session_factory() as session:
            row = Notification(user_id=user_id, type=type, title=title, message=message, is_read=False)
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return NotificationRead.model_validate(row)

    async def find_by_user(self, user_id: int, *, limit: int = 20, offset: int = 0) -> list[NotificationRead]:
        limit = max(1, min(limit, 200))
        offset = max(0, offset)

        q = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset)
            .limit(limit)
        )
        async with self._session_factory() as session:
            r = await session.execute(q)
            return [NotificationRead.model_validate(row) for row in r.scalars().all()]

    async def count_by_user(self, user_id: int) -> int:
        q = select(func.count(Notification.id)).where(Notification.user_id == user_id)
        async with self._session_factory() as session:
            return int((await session.execute(q)).scalar_one())

    async def count_unread(self, user_id: int) -> int:
        q = select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        )
        async with self._session_factory() as session:
            return int((await session.execute(q)).scalar_one())

    async def mark_read(self, notification_id: int, *, user_id: int) -> NotificationRead | None:
        """One-way and idempotent: marking a read notification again is a no-op."""

        async with self._session_factory() as session:
            q = select(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
            row = (await session.execute(q)).scalar_one_or_none()
            if row is None:
                return None
            if not row.is_read:
                row.is_read = True
                await session.commit()
                await session.refresh(row)
            return NotificationRead.model_validate(row)


class SqlEmailNotificationStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, *, user_id: int, subject: str, body: str) -> EmailNotificationRead:
        async with self._session_factory() as session:
            row = EmailNotification(user_id=user_id, subject=subject, body=body, status=EmailStatus.PENDING.value)
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return EmailNotificationRead.model_validate(row)

    async def find_by_id(self, email_notification_id: int) -> EmailNotificationRead | None:
        async with self._session_factory() as session:
            row = await session.get(EmailNotification, email_notification_id)
            return EmailNotificationRead.model_validate(row) if row is not None else None

    async def _finish(self, email_notification_id: int, values: dict) -> bool:
        # Conditional on status=pending so a terminal record is never rewritten.
        q = (
            update(EmailNotification)
            .where(
                EmailNotification.id == email_notification_id,
                EmailNotification.status == EmailStatus.PENDING.value,
            )
            .values(**values)
        )
        async with self._session_factory() as session:
            r = await session.execute(q)
            await session.commit()
            return r.rowcount == 1

    async def mark_sent(self, email_notification_id: int, *, sent_at: datetime) -> bool:
        return await self._finish(
            email_notification_id,
            {"status": EmailStatus.SENT.value, "sent_at": sent_at, "error": None},
        )

    async def mark_failed(self, email_notification_id: int, *, error: str) -> bool:
        return await self._finish(
            email_notification_id,
            {"status": EmailStatus.FAILED.value, "error": error},
        )
