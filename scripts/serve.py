from __future__ import annotations

import argparse
import asyncio
import logging

import uvicorn
from redis.exceptions import RedisError

from scribe.core.config import get_settings
from scribe.core.logging import configure_logging
from scribe.persistence.bootstrap import create_database
from scribe.services.schema_resolver import flush_schema_cache


logger = logging.getLogger("scribe.serve")


async def _prepare(skip_create_db: bool) -> None:
    if not skip_create_db:
        await create_database()
    # Workers share the Redis cache, so stale schemas are dropped once here.
    try:
        await flush_schema_cache()
    except RedisError as exc:
        logger.warning("schema_cache_flush_failed error=%s", exc)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the Scribe API server")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--workers", type=int, default=None)
    parser.add_argument("--skip-create-db", action="store_true")
    args = parser.parse_args()

    configure_logging()
    settings = get_settings()
    asyncio.run(_prepare(args.skip_create_db))
    uvicorn.run(
        "scribe.apps.api.main:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        workers=args.workers or settings.workers,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
