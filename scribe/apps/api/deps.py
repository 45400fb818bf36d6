from __future__ import annotations

import json
from typing import Any, AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from scribe.core.errors import QueryError
from scribe.domain.components import ComponentName
from scribe.domain.query import QueryParams
from scribe.persistence.db import get_session
from scribe.services.schema_resolver import SchemaResolver


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


_resolver: SchemaResolver | None = None


def get_schema_resolver() -> SchemaResolver:
    # Share one resolver per worker so its local schema cache survives requests.
    global _resolver
    if _resolver is None:
        _resolver = SchemaResolver()
    return _resolver


async def close_schema_resolver() -> None:
    global _resolver
    if _resolver is not None:
        await _resolver.aclose()
    _resolver = None


def component_name(component: str, subcomponent: str | None = None) -> ComponentName:
    return ComponentName.parse(component, subcomponent)


async def read_json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise QueryError("Failed to parse body") from exc


async def query_params(request: Request) -> QueryParams:
    # Query-string values take precedence over the same fields in the body.
    body = await read_json_body(request)
    return QueryParams.from_sources(request.query_params, body)
