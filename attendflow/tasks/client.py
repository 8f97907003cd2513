from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from attendflow.broker import Broker
from attendflow.errors import EnqueueError
from attendflow.schemas.payloads import encode_payload
from attendflow.tasks.types import DEFAULT_MAX_RETRY, DEFAULT_QUEUE, Task, TaskType

logger = logging.getLogger(__name__)


class TaskClient:
    """Producer side of the broker: serialize, build the Task, enqueue."""

    def __init__(self, broker: Broker) -> None:
        self._broker = broker

    async def enqueue(
        self,
        task_type: TaskType | str,
        payload: BaseModel | dict[str, Any] | None = None,
        *,
        queue: str = DEFAULT_QUEUE,
        max_retry: int = DEFAULT_MAX_RETRY,
        process_at: datetime | None = None,
    ) -> str:
        """Enqueue a task and return its id.

        Accepted by the broker is the only guarantee: processing happens later
        on some worker. Every failure is raised as EnqueueError.
        """

        try:
            data = encode_payload(payload)
        except (TypeError, ValueError) as exc:
            raise EnqueueError(f"failed to serialize {task_type} payload: {exc}") from exc

        task = Task.new(task_type, data, queue=queue, max_retry=max_retry, scheduled_at=process_at)
        try:
            task_id = await self._broker.enqueue(task)
        except EnqueueError:
            raise
        except Exception as exc:
            raise EnqueueError(f"failed to enqueue {task.type}: {exc}") from exc

        logger.debug("task enqueued task_id=%s type=%s queue=%s", task_id, task.type, queue)
        return task_id
