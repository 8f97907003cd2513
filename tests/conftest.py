import pytest

from attendflow.config import Settings


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def test_settings() -> Settings:
    """Fast timings, in-process broker, no scheduler loop."""

    return Settings(
        broker_backend="memory",
        worker_concurrency=2,
        email_worker_concurrency=1,
        task_timeout_seconds=2.0,
        broker_visibility_timeout_seconds=10.0,
        task_max_retry=3,
        retry_initial_delay_seconds=0.0,
        shutdown_grace_seconds=2.0,
        poll_interval_seconds=0.05,
        scheduler_enabled=False,
        cron_timezone="UTC",
    )
