from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from scribe.core.config import Settings, get_settings


def engine_options(settings: Settings) -> dict[str, Any]:
    """Pool and driver options for one worker's asyncpg engine."""
    options: dict[str, Any] = {
        "pool_pre_ping": True,
        "pool_size": max(1, settings.api_db_pool_size),
        "max_overflow": max(0, settings.api_db_max_overflow),
        "pool_recycle": 1800,
    }
    if settings.api_db_statement_timeout_ms > 0:
        options["connect_args"] = {
            "server_settings": {"statement_timeout": str(settings.api_db_statement_timeout_ms)}
        }
    return options


def build_engine(settings: Settings | None = None) -> AsyncEngine:
    settings = settings or get_settings()
    return create_async_engine(settings.database_url, **engine_options(settings))


engine = build_engine()
# Component rows are plain dicts, so sessions never need to refresh expired state.
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session
