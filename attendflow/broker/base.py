from __future__ import annotations

import abc
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from attendflow.tasks.types import DeadLetter, Task


@dataclass
class Delivery:
    """A task leased to one worker.

    `receipt` is the broker-specific handle used to acknowledge the lease.
    """

    task: Task
    receipt: str
    delivered_at: datetime | None = None


@dataclass(frozen=True)
class BrokerStats:
    queues: dict[str, int]
    scheduled: int
    in_flight: int
    dead: int


class Broker(abc.ABC):
    """Durable task queue.

    Delivery is at-least-once: a task is handed to at most one consumer while
    its lease is live, and comes back if the holder neither acks, retries nor
    dead-letters it.
    """

    @abc.abstractmethod
    async def enqueue(self, task: Task) -> str:
        """Persist a task and return its id. Raises EnqueueError."""

    @abc.abstractmethod
    async def dequeue(self, queues: Sequence[str], timeout: float) -> Delivery | None:
        """Lease the next due task from `queues` (earlier queues first).

        Waits up to `timeout` seconds; returns None when nothing became
        available or the broker is closed.
        """

    @abc.abstractmethod
    async def ack(self, delivery: Delivery) -> None:
        """Handled successfully; forget the task."""

    @abc.abstractmethod
    async def retry(self, delivery: Delivery, *, error: str, process_at: datetime) -> None:
        """Release the lease and schedule the task again with one more attempt counted."""

    @abc.abstractmethod
    async def requeue(self, delivery: Delivery) -> None:
        """Release the lease without counting an attempt (shutdown hand-back)."""

    @abc.abstractmethod
    async def dead_letter(self, delivery: Delivery, *, error: str) -> None:
        """Move the task to terminal dead-letter storage."""

    @abc.abstractmethod
    async def dead_letters(self, limit: int = 100) -> list[DeadLetter]:
        """Most recent dead letters first."""

    @abc.abstractmethod
    async def requeue_dead_letter(self, task_id: str) -> bool:
        """Put a dead-lettered task back on its queue with a fresh retry budget."""

    @abc.abstractmethod
    async def stats(self, queues: Sequence[str]) -> BrokerStats:
        ...

    @abc.abstractmethod
    async def close(self) -> None:
        ...
