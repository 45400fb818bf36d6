from __future__ import annotations

import argparse
import asyncio

from scribe.core.logging import configure_logging
from scribe.services.schema_resolver import flush_schema_cache


def main() -> None:
    parser = argparse.ArgumentParser(description="Flush the shared schema cache")
    parser.add_argument("--redis-url", default=None)
    args = parser.parse_args()
    configure_logging()
    asyncio.run(flush_schema_cache(args.redis_url))
    print("schema_cache_flushed=true")


if __name__ == "__main__":
    main()
