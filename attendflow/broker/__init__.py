from __future__ import annotations

from attendflow.config import Settings

from .base import Broker, BrokerStats, Delivery
from .memory import InMemoryBroker
from .redis_broker import RedisBroker


def create_broker(settings: Settings) -> Broker:
    """Build the broker selected by BROKER_BACKEND."""

    if settings.broker_backend == "memory":
        return InMemoryBroker()
    if settings.broker_backend == "redis":
        return RedisBroker.from_url(
            settings.redis_url,
            prefix=settings.queue_key_prefix,
            visibility_timeout=settings.broker_visibility_timeout_seconds,
        )
    raise ValueError(f"unknown broker backend {settings.broker_backend!r}")


__all__ = [
    "Broker",
    "BrokerStats",
    "Delivery",
    "InMemoryBroker",
    "RedisBroker",
    "create_broker",
]
