from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import create_async_engine

from scribe.core.config import get_settings
from scribe.domain.components import quote_identifier
from scribe.persistence.store import sqlstate


logger = logging.getLogger(__name__)

DUPLICATE_DATABASE = "42P04"


async def create_database(database_url: str | None = None, maintenance_db: str = "postgres") -> bool:
    """Create the configured database if it does not exist yet.

    Returns ``True`` when the database was created and ``False`` when it was
    already present. Component tables are created lazily on first write, so
    nothing else is provisioned here.
    """
    url = make_url(database_url or get_settings().database_url)
    name = url.database
    if not name:
        raise ValueError("database_url has no database name")
    # CREATE DATABASE cannot run inside a transaction block.
    engine = create_async_engine(url.set(database=maintenance_db), isolation_level="AUTOCOMMIT")
    try:
        async with engine.connect() as conn:
            await conn.execute(text(f"CREATE DATABASE {quote_identifier(name)}"))
    except DBAPIError as exc:
        if sqlstate(exc) == DUPLICATE_DATABASE:
            logger.info("database_exists name=%s", name)
            return False
        raise
    finally:
        await engine.dispose()
    logger.info("database_created name=%s", name)
    return True
