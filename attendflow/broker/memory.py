from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from collections import deque
from collections.abc import Sequence
from datetime import datetime, timezone

from attendflow.errors import EnqueueError
from attendflow.tasks.types import DeadLetter, Task

from .base import Broker, BrokerStats, Delivery

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryBroker(Broker):
    """Process-local broker for development and tests.

    Same delivery contract as the Redis broker within one process; nothing
    survives a restart.
    """

    def __init__(self, *, max_dead_letters: int = 10_000) -> None:
        self._ready: dict[str, deque[Task]] = {}
        self._scheduled: list[tuple[datetime, int, Task]] = []
        self._seq = itertools.count()
        self._in_flight: dict[str, Delivery] = {}
        self._dead: deque[DeadLetter] = deque(maxlen=max_dead_letters)
        self._cond = asyncio.Condition()
        self._closed = False

    async def enqueue(self, task: Task) -> str:
        if self._closed:
            raise EnqueueError("broker is closed")
        async with self._cond:
            self._put(task)
            self._cond.notify_all()
        return task.id

    def _put(self, task: Task) -> None:
        if task.scheduled_at is not None and task.scheduled_at > _utcnow():
            heapq.heappush(self._scheduled, (task.scheduled_at, next(self._seq), task))
        else:
            self._ready.setdefault(task.queue, deque()).append(task)

    def _promote_due(self) -> None:
        now = _utcnow()
        while self._scheduled and self._scheduled[0][0] <= now:
            _, _, task = heapq.heappop(self._scheduled)
            self._ready.setdefault(task.queue, deque()).append(task)

    def _seconds_until_next_due(self) -> float | None:
        if not self._scheduled:
            return None
        return (self._scheduled[0][0] - _utcnow()).total_seconds()

    def _pop_ready(self, queues: Sequence[str]) -> Task | None:
        for name in queues:
            pending = self._ready.get(name)
            if pending:
                return pending.popleft()
        return None

    async def dequeue(self, queues: Sequence[str], timeout: float) -> Delivery | None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        async with self._cond:
            while not self._closed:
                self._promote_due()
                task = self._pop_ready(queues)
                if task is not None:
                    delivery = Delivery(task=task, receipt=task.id, delivered_at=_utcnow())
                    self._in_flight[task.id] = delivery
                    return delivery

                remaining = deadline - loop.time()
                if remaining <= 0:
                    return None
                wait = remaining
                next_due = self._seconds_until_next_due()
                if next_due is not None:
                    wait = min(wait, max(next_due, 0.001))
                try:
                    await asyncio.wait_for(self._cond.wait(), timeout=wait)
                except asyncio.TimeoutError:
                    pass

        # A closed broker behaves as permanently empty.
        await asyncio.sleep(max(0.0, deadline - loop.time()))
        return None

    def _release(self, delivery: Delivery) -> None:
        self._in_flight.pop(delivery.receipt, None)

    async def ack(self, delivery: Delivery) -> None:
        async with self._cond:
            self._release(delivery)

    async def retry(self, delivery: Delivery, *, error: str, process_at: datetime) -> None:
        async with self._cond:
            self._release(delivery)
            self._put(delivery.task.retry_of(error=error, scheduled_at=process_at))
            self._cond.notify_all()

    async def requeue(self, delivery: Delivery) -> None:
        async with self._cond:
            self._release(delivery)
            self._ready.setdefault(delivery.task.queue, deque()).appendleft(delivery.task)
            self._cond.notify_all()

    async def dead_letter(self, delivery: Delivery, *, error: str) -> None:
        async with self._cond:
            self._release(delivery)
            self._dead.appendleft(DeadLetter(task=delivery.task, error=error))

    async def dead_letters(self, limit: int = 100) -> list[DeadLetter]:
        return list(itertools.islice(self._dead, max(0, limit)))

    async def requeue_dead_letter(self, task_id: str) -> bool:
        async with self._cond:
            for item in self._dead:
                if item.task.id == task_id:
                    self._dead.remove(item)
                    self._put(item.task.reset())
                    self._cond.notify_all()
                    return True
        return False

    async def stats(self, queues: Sequence[str]) -> BrokerStats:
        return BrokerStats(
            queues={name: len(self._ready.get(name, ())) for name in queues},
            scheduled=len(self._scheduled),
            in_flight=len(self._in_flight),
            dead=len(self._dead),
        )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        async with self._cond:
            self._cond.notify_all()
        if self._in_flight:
            logger.warning("memory broker closed with %s task(s) in flight", len(self._in_flight))
