from __future__ import annotations

import pytest

from scribe.apps.api.deps import close_schema_resolver
from scribe.core.config import get_settings
from scribe.persistence.db import engine


@pytest.fixture(autouse=True)
async def dispose_engine_between_tests() -> None:
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    yield
    await engine.dispose()


@pytest.fixture(autouse=True)
async def reset_process_singletons() -> None:
    # Settings and the shared resolver are cached per process; start each test clean.
    yield
    get_settings.cache_clear()
    await close_schema_resolver()
