from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from attendflow.tasks.types import DeadLetter


class DeadLetterRead(BaseModel):
    task_id: str
    type: str
    queue: str
    retried: int
    max_retry: int
    payload: str
    error: str
    enqueued_at: datetime
    failed_at: datetime

    @classmethod
    def from_dead_letter(cls, item: DeadLetter) -> "DeadLetterRead":
        return cls(
            task_id=item.task.id,
            type=item.task.type,
            queue=item.task.queue,
            retried=item.task.retried,
            max_retry=item.task.max_retry,
            payload=item.task.payload.decode("utf-8", errors="replace"),
            error=item.error,
            enqueued_at=item.task.enqueued_at,
            failed_at=item.failed_at,
        )


class DeadLetterListResponse(BaseModel):
    items: list[DeadLetterRead]


class QueueStatsResponse(BaseModel):
    queues: dict[str, int]
    scheduled: int
    in_flight: int
    dead: int
    workers: dict[str, dict[str, int]]
