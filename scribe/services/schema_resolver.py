from __future__ import annotations

import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable

import httpx
from redis.asyncio import Redis
from redis.exceptions import RedisError

from scribe.core.config import Settings, get_settings
from scribe.core.errors import SchemaCompileError, SchemaResolutionError
from scribe.services.schema_compiler import SchemaValidator, compile_schema


logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parent.parent / "core" / "default_table_schema.json"


@dataclass(frozen=True)
class ComponentSchema:
    # Resolved schema plus the validator compiled from it.
    schema: dict[str, Any]
    validator: SchemaValidator


async def flush_schema_cache(redis_url: str | None = None) -> None:
    """Drop every cached schema; run once before workers start serving."""
    client = Redis.from_url(redis_url or get_settings().redis_url, encoding="utf-8", decode_responses=True)
    try:
        await client.flushdb()
        logger.info("schema_cache_flushed")
    finally:
        await client.aclose()


def load_default_schema(path: str | None = None) -> dict[str, Any]:
    schema_path = Path(path) if path else DEFAULT_SCHEMA_PATH
    return json.loads(schema_path.read_text(encoding="utf-8"))


class SchemaResolver:
    """Resolve component names to compiled schemas.

    Lookup order is the per-process cache, the shared Redis cache, the remote
    schema authority, and finally the default schema unless ``require_schema``
    is set.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        redis_factory: Callable[[], Awaitable[Redis | None]] | None = None,
        http_client: httpx.AsyncClient | None = None,
        default_schema: dict[str, Any] | None = None,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._redis_factory = redis_factory
        self._redis: Redis | None = None
        self._http_client = http_client
        self._default_schema = default_schema
        self._default: ComponentSchema | None = None
        self._time = time_source or time.monotonic
        self._local: dict[str, tuple[float, ComponentSchema]] = {}

    async def _shared_cache(self) -> Redis | None:
        # Lazily open this resolver's own client; an empty redis_url disables the shared cache.
        if self._redis_factory is not None:
            return await self._redis_factory()
        if self._redis is None and self._settings.redis_url:
            self._redis = Redis.from_url(self._settings.redis_url, encoding="utf-8", decode_responses=True)
        return self._redis

    async def aclose(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        timeout = self._settings.schema_fetch_timeout_ms / 1000.0
        async with httpx.AsyncClient(timeout=timeout) as client:
            yield client

    async def resolve(self, component: str) -> ComponentSchema:
        local = self._get_local(component)
        if local is not None:
            return local

        cached = await self._from_shared_cache(component)
        if cached is not None:
            self._set_local(component, cached)
            return cached

        try:
            remote = await self._from_remote(component)
        except SchemaResolutionError as exc:
            if self._settings.require_schema:
                raise
            logger.warning("schema_fallback_default component=%s reason=%s", component, exc)
            return await self.default()
        self._set_local(component, remote)
        return remote

    async def default(self) -> ComponentSchema:
        if self._default is None:
            schema = self._default_schema
            if schema is None:
                schema = load_default_schema(self._settings.default_schema_path)
            async with self._client() as client:
                validator = await compile_schema(schema, client)
            self._default = ComponentSchema(schema=schema, validator=validator)
        return self._default

    def invalidate(self, component: str | None = None) -> None:
        # Drop local entries so the next resolve consults the shared cache again.
        if component is None:
            self._local.clear()
        else:
            self._local.pop(component, None)

    def _get_local(self, component: str) -> ComponentSchema | None:
        ttl = self._settings.schema_local_cache_ttl_s
        if ttl <= 0:
            return None
        entry = self._local.get(component)
        if entry is None:
            return None
        expires_at, value = entry
        if self._time() >= expires_at:
            self._local.pop(component, None)
            return None
        return value

    def _set_local(self, component: str, value: ComponentSchema) -> None:
        ttl = self._settings.schema_local_cache_ttl_s
        if ttl > 0:
            self._local[component] = (self._time() + ttl, value)

    async def _from_shared_cache(self, component: str) -> ComponentSchema | None:
        redis = await self._shared_cache()
        if redis is None:
            return None
        try:
            raw = await redis.get(component)
        except RedisError as exc:
            logger.warning("schema_cache_read_failed component=%s", component, exc_info=exc)
            return None
        if not raw:
            logger.info("schema_cache_miss component=%s", component)
            return None
        try:
            schema = json.loads(raw)
            async with self._client() as client:
                validator = await compile_schema(schema, client)
        except (ValueError, SchemaCompileError) as exc:
            logger.warning("schema_cache_corrupt component=%s error=%s", component, exc)
            await self._discard(redis, component)
            return None
        logger.info("schema_cache_hit component=%s", component)
        return ComponentSchema(schema=schema, validator=validator)

    async def _discard(self, redis: Redis, component: str) -> None:
        try:
            await redis.delete(component)
        except RedisError as exc:
            logger.warning("schema_cache_delete_failed component=%s", component, exc_info=exc)

    async def _from_remote(self, component: str) -> ComponentSchema:
        base_url = self._settings.schema_base_url
        if not base_url:
            raise SchemaResolutionError("Missing Schema Base Url")
        schema_url = f"{base_url}{component}/schema"
        try:
            async with self._client() as client:
                response = await client.get(schema_url)
                response.raise_for_status()
                schema = response.json()
                if not isinstance(schema, dict):
                    raise SchemaResolutionError(f"Failed to get schema at {schema_url}")
                validator = await compile_schema(schema, client)
        except SchemaResolutionError:
            raise
        except (httpx.HTTPError, ValueError, SchemaCompileError) as exc:
            logger.warning("schema_remote_failed component=%s url=%s error=%s", component, schema_url, exc)
            raise SchemaResolutionError(f"Failed to look up schema at {schema_url}") from exc

        await self._store_shared(component, schema)
        return ComponentSchema(schema=schema, validator=validator)

    async def _store_shared(self, component: str, schema: dict[str, Any]) -> None:
        redis = await self._shared_cache()
        if redis is None:
            return
        try:
            await redis.set(component, json.dumps(schema))
        except RedisError as exc:
            logger.warning("schema_cache_write_failed component=%s", component, exc_info=exc)
