from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime

from attendflow.errors import UnknownTaskTypeError
from attendflow.tasks.types import Task, TaskType


@dataclass(frozen=True)
class TaskContext:
    """What a handler knows about the delivery it is processing."""

    task_id: str
    task_type: TaskType
    queue: str
    attempt: int
    deadline: datetime
    enqueued_at: datetime


Handler = Callable[[TaskContext, Task], Awaitable[None]]


class HandlerRegistry:
    """Closed mapping from TaskType to exactly one handler.

    Only declared TaskType values can be registered; dispatching anything
    else is an UnknownTaskTypeError, which the pool dead-letters without
    retrying.
    """

    def __init__(self) -> None:
        self._handlers: dict[TaskType, Handler] = {}

    def register(self, task_type: TaskType | str, handler: Handler) -> None:
        try:
            kind = TaskType(task_type)
        except ValueError:
            raise ValueError(f"undeclared task type {task_type!r}") from None
        if kind in self._handlers:
            raise ValueError(f"handler already registered for {kind.value}")
        self._handlers[kind] = handler

    def resolve(self, task_type: str) -> tuple[TaskType, Handler]:
        try:
            kind = TaskType(task_type)
            return kind, self._handlers[kind]
        except (ValueError, KeyError):
            raise UnknownTaskTypeError(task_type) from None

    def require(self, task_types: Iterable[TaskType]) -> None:
        missing = [t.value for t in task_types if t not in self._handlers]
        if missing:
            raise ValueError(f"no handler registered for: {', '.join(missing)}")

    @property
    def task_types(self) -> frozenset[TaskType]:
        return frozenset(self._handlers)

    def __contains__(self, task_type: object) -> bool:
        try:
            return TaskType(task_type) in self._handlers
        except ValueError:
            return False
