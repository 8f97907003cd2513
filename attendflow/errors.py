"""Exception taxonomy for background task processing.

Nothing raised downstream of "accepted by the broker" ever reaches the user
whose request produced the task; these errors only steer the worker pool
(retry, dead-letter, record) and the logs.
"""

from __future__ import annotations


class TaskError(Exception):
    """Base class for every task-processing error."""


class EnqueueError(TaskError):
    """The broker did not accept the task (unreachable, or payload not serializable).

    Callers must not assume the task was persisted.
    """


class HandlerError(TaskError):
    """Transient failure inside a handler; the worker pool retries it."""


class NonRetryableError(TaskError):
    """Failure that can never succeed on redelivery; dead-lettered immediately."""


class UnknownTaskTypeError(NonRetryableError):
    def __init__(self, task_type: str) -> None:
        super().__init__(f"no handler registered for task type {task_type!r}")
        self.task_type = task_type


class PayloadError(NonRetryableError):
    """Task payload could not be decoded into its schema."""


class EmailSendError(TaskError):
    """The email transport refused or failed to deliver a message."""
