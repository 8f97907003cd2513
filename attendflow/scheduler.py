from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

from apscheduler.triggers.cron import CronTrigger

from attendflow.config import Settings
from attendflow.tasks.types import DEFAULT_MAX_RETRY, DEFAULT_QUEUE, REPORTS_QUEUE, TaskType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CronEntry:
    cron: str
    task_type: TaskType
    payload: dict[str, Any] | None = None
    queue: str = DEFAULT_QUEUE
    max_retry: int = DEFAULT_MAX_RETRY
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


Producer = Callable[[CronEntry], Awaitable[Any]]


class Scheduler:
    """Cron entries evaluated once per local minute.

    Only the minute containing "now" is ever evaluated: a minute missed
    because the process was down is skipped, never backfilled.
    """

    def __init__(
        self,
        producer: Producer,
        *,
        timezone_: str | tzinfo = "UTC",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._producer = producer
        self._tz = ZoneInfo(timezone_) if isinstance(timezone_, str) else timezone_
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: list[tuple[CronEntry, CronTrigger]] = []
        self._last_minute: datetime | None = None
        self._stopping = asyncio.Event()
        self._running = False

    @property
    def entries(self) -> list[CronEntry]:
        return [entry for entry, _ in self._entries]

    def register(
        self,
        cron: str,
        task_type: TaskType,
        payload: dict[str, Any] | None = None,
        *,
        queue: str = DEFAULT_QUEUE,
        max_retry: int = DEFAULT_MAX_RETRY,
    ) -> CronEntry:
        """Add an entry. Raises ValueError for an invalid cron expression."""

        trigger = CronTrigger.from_crontab(cron, timezone=self._tz)
        entry = CronEntry(cron=cron, task_type=TaskType(task_type), payload=payload, queue=queue, max_retry=max_retry)
        self._entries.append((entry, trigger))
        logger.info("cron entry registered id=%s cron=%r type=%s queue=%s", entry.id, cron, entry.task_type.value, queue)
        return entry

    def unregister(self, entry_id: str) -> bool:
        before = len(self._entries)
        self._entries = [(e, t) for e, t in self._entries if e.id != entry_id]
        return len(self._entries) != before

    def _minute(self, now: datetime) -> datetime:
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self._tz).replace(second=0, microsecond=0)

    @staticmethod
    def _is_due(trigger: CronTrigger, minute: datetime) -> bool:
        fire_at = trigger.get_next_fire_time(None, minute)
        return fire_at is not None and fire_at == minute

    async def tick(self, now: datetime | None = None) -> list[CronEntry]:
        """Enqueue every entry due in the minute containing `now`.

        A minute is evaluated at most once; returns the entries fired.
        """

        minute = self._minute(now or self._clock())
        if self._last_minute is not None and minute <= self._last_minute:
            return []
        self._last_minute = minute

        fired: list[CronEntry] = []
        for entry, trigger in list(self._entries):
            if not self._is_due(trigger, minute):
                continue
            fired.append(entry)
            try:
                await self._producer(entry)
            except Exception:
                logger.exception(
                    "scheduled enqueue failed id=%s type=%s minute=%s",
                    entry.id,
                    entry.task_type.value,
                    minute.isoformat(),
                )
            else:
                logger.info("scheduled task enqueued type=%s minute=%s", entry.task_type.value, minute.isoformat())
        return fired

    async def run(self) -> None:
        """Tick loop; blocks until stop()."""

        if self._running:
            raise RuntimeError("scheduler already running")
        self._running = True
        logger.info("scheduler started entries=%s tz=%s", len(self._entries), self._tz)
        try:
            while not self._stopping.is_set():
                now = self._clock()
                await self.tick(now)
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=_seconds_to_next_minute(now))
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info("scheduler stopped")

    def stop(self) -> None:
        self._stopping.set()


def _seconds_to_next_minute(now: datetime) -> float:
    nxt = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
    # Land just past the boundary so the next tick sees the new minute.
    return max(0.05, (nxt - now).total_seconds() + 0.05)


def register_builtin_entries(scheduler: Scheduler, settings: Settings) -> list[CronEntry]:
    """Daily pending-leave reminder and weekly absentee report."""

    return [
        scheduler.register(settings.reminder_cron, TaskType.REMINDER_EMAIL),
        scheduler.register(
            settings.absentee_report_cron,
            TaskType.ABSENTEE_REPORT,
            queue=REPORTS_QUEUE,
            max_retry=settings.absentee_report_max_retry,
        ),
    ]
