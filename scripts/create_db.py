from __future__ import annotations

import argparse
import asyncio

from scribe.core.logging import configure_logging
from scribe.persistence.bootstrap import create_database


def main() -> None:
    # Provision the database before the first server start.
    parser = argparse.ArgumentParser(description="Create the Scribe database if missing")
    parser.add_argument("--database-url", default=None)
    parser.add_argument("--maintenance-db", default="postgres")
    args = parser.parse_args()
    configure_logging()
    created = asyncio.run(create_database(args.database_url, maintenance_db=args.maintenance_db))
    print(f"database_created={str(created).lower()}")


if __name__ == "__main__":
    main()
