from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

from attendflow.broker import Broker, Delivery
from attendflow.errors import HandlerError, NonRetryableError, UnknownTaskTypeError

from .backoff import RetryPolicy
from .registry import HandlerRegistry, TaskContext

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkerPool:
    """A fixed number of asyncio workers pulling from the broker.

    Each worker loops dequeue -> dispatch -> ack/retry/dead-letter. A failing
    task never takes a worker down with it. Shutdown is observed between
    tasks, never in the middle of a handler, unless the grace period runs out.
    """

    def __init__(
        self,
        broker: Broker,
        registry: HandlerRegistry,
        *,
        queues: Sequence[str],
        concurrency: int = 10,
        retry_policy: RetryPolicy | None = None,
        task_timeout: float = 120.0,
        shutdown_grace: float = 30.0,
        poll_interval: float = 1.0,
        name: str = "default",
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if not queues:
            raise ValueError("a worker pool needs at least one queue")

        self.name = name
        self._broker = broker
        self._registry = registry
        self._queues = list(queues)
        self._concurrency = concurrency
        self._retry_policy = retry_policy or RetryPolicy()
        self._task_timeout = task_timeout
        self._shutdown_grace = shutdown_grace
        self._poll_interval = poll_interval

        self._stopping = asyncio.Event()
        self._drained = asyncio.Event()
        self._workers: list[asyncio.Task] = []
        self._started = False
        self._stop_requested = False
        self._in_flight = 0
        self._counters: Counter[str] = Counter()

    @property
    def queues(self) -> list[str]:
        return list(self._queues)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def stats(self) -> dict[str, int]:
        return {
            "concurrency": self._concurrency,
            "in_flight": self._in_flight,
            "processed": self._counters["processed"],
            "failed": self._counters["failed"],
            "retried": self._counters["retried"],
            "dead_lettered": self._counters["dead_lettered"],
        }

    async def run(self) -> None:
        """Run the workers until stop() is called. Blocks."""

        if self._started:
            raise RuntimeError(f"worker pool {self.name} already started")
        if self._stop_requested:
            logger.info("worker pool %s stopped before start; not running", self.name)
            return
        self._started = True

        logger.info(
            "worker pool started name=%s concurrency=%s queues=%s",
            self.name,
            self._concurrency,
            ",".join(self._queues),
        )
        self._workers = [
            asyncio.create_task(self._work(i), name=f"{self.name}-worker-{i}")
            for i in range(self._concurrency)
        ]
        await asyncio.gather(*self._workers, return_exceptions=True)
        logger.info("worker pool exited name=%s", self.name)

    async def stop(self) -> None:
        """Stop pulling tasks and drain in-flight ones.

        Returns once every worker finished, or once the grace period elapsed
        and the stragglers were cancelled (their tasks go back to the broker).
        """

        if self._stop_requested:
            await self._drained.wait()
            return
        self._stop_requested = True
        self._stopping.set()

        if not self._workers:
            self._drained.set()
            return

        logger.info("stopping worker pool name=%s in_flight=%s", self.name, self._in_flight)
        _, pending = await asyncio.wait(self._workers, timeout=self._shutdown_grace)
        if pending:
            logger.warning(
                "grace period of %.1fs elapsed, cancelling %s worker(s) name=%s",
                self._shutdown_grace,
                len(pending),
                self.name,
            )
            for worker in pending:
                worker.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        self._drained.set()
        logger.info("worker pool drained name=%s", self.name)

    async def _pause(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _work(self, index: int) -> None:
        while not self._stopping.is_set():
            try:
                delivery = await self._broker.dequeue(self._queues, timeout=self._poll_interval)
            except Exception:
                logger.exception("dequeue failed pool=%s worker=%s", self.name, index)
                await self._pause(self._poll_interval)
                continue

            if delivery is None:
                continue
            if self._stopping.is_set():
                # Stop arrived while this worker was waiting on the broker.
                await self._hand_back(delivery)
                break
            await self._process(delivery)

    async def _process(self, delivery: Delivery) -> None:
        task = delivery.task
        try:
            kind, handler = self._registry.resolve(task.type)
        except UnknownTaskTypeError as exc:
            logger.error("poison task, dead-lettering task_id=%s type=%s", task.id, task.type)
            await self._dead_letter(delivery, exc)
            return

        ctx = TaskContext(
            task_id=task.id,
            task_type=kind,
            queue=task.queue,
            attempt=task.retried + 1,
            deadline=_utcnow() + timedelta(seconds=self._task_timeout),
            enqueued_at=task.enqueued_at,
        )

        self._in_flight += 1
        try:
            await asyncio.wait_for(handler(ctx, task), timeout=self._task_timeout)
        except asyncio.CancelledError:
            logger.warning("task interrupted by shutdown task_id=%s type=%s", task.id, task.type)
            await self._hand_back(delivery)
            raise
        except asyncio.TimeoutError:
            await self._fail(delivery, HandlerError(f"handler exceeded deadline of {self._task_timeout}s"))
        except NonRetryableError as exc:
            logger.error("non-retryable failure task_id=%s type=%s error=%s", task.id, task.type, exc)
            await self._dead_letter(delivery, exc)
        except Exception as exc:
            await self._fail(delivery, exc)
        else:
            self._counters["processed"] += 1
            try:
                await self._broker.ack(delivery)
            except Exception:
                # The lease will lapse and the task be delivered again.
                logger.exception("ack failed task_id=%s type=%s", task.id, task.type)
            logger.info("task done task_id=%s type=%s attempt=%s", task.id, task.type, ctx.attempt)
        finally:
            self._in_flight -= 1

    async def _fail(self, delivery: Delivery, exc: BaseException) -> None:
        task = delivery.task
        failures = task.retried + 1
        self._counters["failed"] += 1

        if self._retry_policy.is_exhausted(failures=failures, max_retry=task.max_retry):
            logger.error(
                "task exhausted retries, dead-lettering task_id=%s type=%s attempts=%s",
                task.id,
                task.type,
                failures,
                exc_info=exc,
            )
            await self._dead_letter(delivery, exc)
            return

        delay = self._retry_policy.delay_for(task.retried)
        logger.warning(
            "task failed, retrying task_id=%s type=%s attempt=%s/%s delay=%.1fs error=%s",
            task.id,
            task.type,
            failures,
            task.max_retry,
            delay,
            exc,
        )
        try:
            await self._broker.retry(
                delivery,
                error=_describe(exc),
                process_at=_utcnow() + timedelta(seconds=delay),
            )
        except Exception:
            logger.exception("could not schedule retry task_id=%s type=%s", task.id, task.type)
            return
        self._counters["retried"] += 1

    async def _dead_letter(self, delivery: Delivery, exc: BaseException) -> None:
        try:
            await self._broker.dead_letter(delivery, error=_describe(exc))
        except Exception:
            logger.exception("could not dead-letter task_id=%s type=%s", delivery.task.id, delivery.task.type)
            return
        self._counters["dead_lettered"] += 1

    async def _hand_back(self, delivery: Delivery) -> None:
        try:
            await self._broker.requeue(delivery)
        except Exception:
            logger.exception("could not hand back task_id=%s type=%s", delivery.task.id, delivery.task.type)


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"
