from .backoff import RetryPolicy  # noqa: F401
from .pool import WorkerPool  # noqa: F401
from .registry import Handler, HandlerRegistry, TaskContext  # noqa: F401
