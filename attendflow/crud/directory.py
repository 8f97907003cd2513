"""Read-side access to tables owned by the main attendance API."""

from __future__ import annotations

from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from attendflow.models.attendance import Attendance
from attendflow.models.leave_request import LeaveRequest
from attendflow.models.user import User
from attendflow.schemas import PendingLeaveRead, UserRead


class SqlUserStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_by_id(self, user_id: int) -> UserRead | None:
        async with self._session_factory() as session:
            row = await session.get(User, user_id)
            return UserRead.model_validate(row) if row is not None else None


class SqlLeaveStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_pending(self) -> list[PendingLeaveRead]:
        q = select(LeaveRequest).where(LeaveRequest.status == "pending").order_by(LeaveRequest.id.asc())
        async with self._session_factory() as session:
            r = await session.execute(q)
            return [PendingLeaveRead.model_validate(row) for row in r.scalars().all()]


class SqlAttendanceStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def absence_counts(self, start: date, end: date) -> dict[int, int]:
        q = (
            select(Attendance.student_id, func.count(Attendance.id))
            .where(
                Attendance.present.is_(False),
                Attendance.date >= start,
                Attendance.date <= end,
            )
            .group_by(Attendance.student_id)
        )
        async with self._session_factory() as session:
            r = await session.execute(q)
            return {int(student_id): int(n) for student_id, n in r.all()}
