from __future__ import annotations

import os
import sys

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from attendflow.config import settings


_engine_kwargs: dict = {"pool_pre_ping": True}

# Under pytest each anyio test runs its own event loop; pooled asyncpg
# connections must not outlive the loop that opened them.
if os.getenv("PYTEST_CURRENT_TEST") or ("pytest" in sys.modules):
    _engine_kwargs["poolclass"] = NullPool

engine = create_async_engine(settings.database_url, **_engine_kwargs)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
