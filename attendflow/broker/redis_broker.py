from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from datetime import datetime, timezone

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from attendflow.errors import EnqueueError
from attendflow.tasks.types import DeadLetter, Task

from .base import Broker, BrokerStats, Delivery

logger = logging.getLogger(__name__)

# Moves between keys run as scripts: a task is always in exactly one place,
# and a task in an active list always has a lease.

# KEYS: queue, active, leases. ARGV: lease expiry.
_TAKE = """
local raw = redis.call('LMOVE', KEYS[1], KEYS[2], 'RIGHT', 'LEFT')
if raw then
  redis.call('ZADD', KEYS[3], ARGV[1], raw)
end
return raw
"""

# KEYS: scheduled, queue. ARGV: raw task.
_PROMOTE = """
if redis.call('ZREM', KEYS[1], ARGV[1]) == 1 then
  redis.call('LPUSH', KEYS[2], ARGV[1])
  return 1
end
return 0
"""

# KEYS: leases, active, queue. ARGV: raw task, now.
_RECLAIM = """
local score = redis.call('ZSCORE', KEYS[1], ARGV[1])
if not score or tonumber(score) > tonumber(ARGV[2]) then
  return 0
end
redis.call('ZREM', KEYS[1], ARGV[1])
redis.call('LREM', KEYS[2], 1, ARGV[1])
redis.call('RPUSH', KEYS[3], ARGV[1])
return 1
"""

# KEYS: dead, queue. ARGV: dead-letter record, reset task.
_REVIVE = """
if redis.call('LREM', KEYS[1], 1, ARGV[1]) == 1 then
  redis.call('LPUSH', KEYS[2], ARGV[2])
  return 1
end
return 0
"""


class RedisBroker(Broker):
    """Redis-backed broker.

    Key layout (all under `prefix`):
    - `queue:<name>`   pending list, LPUSH to enqueue, consumed from the right
    - `active:<name>`  tasks currently leased to a worker
    - `leases`         sorted set, member = raw task, score = lease expiry
    - `scheduled`      sorted set, member = raw task, score = due time
    - `dead`           dead-letter list, newest first

    A lease that expires (worker crashed or hung past the visibility timeout)
    is moved back to its pending list by the next consumer that polls.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        *,
        prefix: str = "attendflow",
        visibility_timeout: float = 300.0,
        poll_interval: float = 0.2,
        max_dead_letters: int = 10_000,
    ) -> None:
        self._redis = redis
        self._prefix = prefix
        self._visibility_timeout = visibility_timeout
        self._poll_interval = poll_interval
        self._max_dead_letters = max_dead_letters
        self._closed = False

        self._take = redis.register_script(_TAKE)
        self._promote = redis.register_script(_PROMOTE)
        self._reclaim = redis.register_script(_RECLAIM)
        self._revive = redis.register_script(_REVIVE)

    @classmethod
    def from_url(cls, url: str, **kwargs) -> RedisBroker:
        return cls(aioredis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, *parts: str) -> str:
        return ":".join((self._prefix, *parts))

    async def enqueue(self, task: Task) -> str:
        raw = task.to_json()
        try:
            if task.scheduled_at is not None and task.scheduled_at.timestamp() > time.time():
                await self._redis.zadd(self._key("scheduled"), {raw: task.scheduled_at.timestamp()})
            else:
                await self._redis.lpush(self._key("queue", task.queue), raw)
        except RedisError as exc:
            raise EnqueueError(f"redis rejected task {task.id} ({task.type}): {exc}") from exc
        return task.id

    async def _promote_due(self) -> None:
        due = await self._redis.zrangebyscore(self._key("scheduled"), "-inf", time.time(), start=0, num=100)
        for raw in due:
            task = Task.from_json(raw)
            await self._promote(keys=[self._key("scheduled"), self._key("queue", task.queue)], args=[raw])

    async def _reclaim_expired(self) -> None:
        now = time.time()
        expired = await self._redis.zrangebyscore(self._key("leases"), "-inf", now, start=0, num=100)
        for raw in expired:
            task = Task.from_json(raw)
            moved = await self._reclaim(
                keys=[self._key("leases"), self._key("active", task.queue), self._key("queue", task.queue)],
                args=[raw, now],
            )
            if moved:
                logger.warning("lease expired, redelivering task_id=%s type=%s", task.id, task.type)

    async def _try_take(self, queues: Sequence[str]) -> Delivery | None:
        for name in queues:
            raw = await self._take(
                keys=[self._key("queue", name), self._key("active", name), self._key("leases")],
                args=[time.time() + self._visibility_timeout],
            )
            if raw is None:
                continue
            return Delivery(task=Task.from_json(raw), receipt=raw, delivered_at=datetime.now(timezone.utc))
        return None

    async def dequeue(self, queues: Sequence[str], timeout: float) -> Delivery | None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self._closed:
            await self._promote_due()
            await self._reclaim_expired()
            delivery = await self._try_take(queues)
            if delivery is not None:
                return delivery
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self._poll_interval, remaining))

        await asyncio.sleep(max(0.0, deadline - loop.time()))
        return None

    def _release(self, pipe, delivery: Delivery) -> None:
        pipe.lrem(self._key("active", delivery.task.queue), 1, delivery.receipt)
        pipe.zrem(self._key("leases"), delivery.receipt)

    async def ack(self, delivery: Delivery) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            self._release(pipe, delivery)
            await pipe.execute()

    async def retry(self, delivery: Delivery, *, error: str, process_at: datetime) -> None:
        nxt = delivery.task.retry_of(error=error, scheduled_at=process_at)
        async with self._redis.pipeline(transaction=True) as pipe:
            self._release(pipe, delivery)
            pipe.zadd(self._key("scheduled"), {nxt.to_json(): process_at.timestamp()})
            await pipe.execute()

    async def requeue(self, delivery: Delivery) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            self._release(pipe, delivery)
            pipe.rpush(self._key("queue", delivery.task.queue), delivery.receipt)
            await pipe.execute()

    async def dead_letter(self, delivery: Delivery, *, error: str) -> None:
        record = DeadLetter(task=delivery.task, error=error)
        async with self._redis.pipeline(transaction=True) as pipe:
            self._release(pipe, delivery)
            pipe.lpush(self._key("dead"), record.to_json())
            pipe.ltrim(self._key("dead"), 0, self._max_dead_letters - 1)
            await pipe.execute()

    async def dead_letters(self, limit: int = 100) -> list[DeadLetter]:
        if limit <= 0:
            return []
        raws = await self._redis.lrange(self._key("dead"), 0, limit - 1)
        return [DeadLetter.from_json(raw) for raw in raws]

    async def requeue_dead_letter(self, task_id: str) -> bool:
        raws = await self._redis.lrange(self._key("dead"), 0, -1)
        for raw in raws:
            item = DeadLetter.from_json(raw)
            if item.task.id != task_id:
                continue
            revived = await self._revive(
                keys=[self._key("dead"), self._key("queue", item.task.queue)],
                args=[raw, item.task.reset().to_json()],
            )
            return bool(revived)
        return False

    async def stats(self, queues: Sequence[str]) -> BrokerStats:
        async with self._redis.pipeline(transaction=False) as pipe:
            for name in queues:
                pipe.llen(self._key("queue", name))
            pipe.zcard(self._key("scheduled"))
            pipe.zcard(self._key("leases"))
            pipe.llen(self._key("dead"))
            counts = await pipe.execute()
        return BrokerStats(
            queues={name: int(n) for name, n in zip(queues, counts)},
            scheduled=int(counts[-3]),
            in_flight=int(counts[-2]),
            dead=int(counts[-1]),
        )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._redis.aclose()
