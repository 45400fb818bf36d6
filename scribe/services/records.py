from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from scribe.core.errors import ValidationError
from scribe.domain.components import ComponentName
from scribe.persistence.store import ComponentStore
from scribe.services.schema_resolver import ComponentSchema, SchemaResolver


logger = logging.getLogger(__name__)


async def _validated_schema(resolver: SchemaResolver, component: ComponentName, body: Any) -> ComponentSchema:
    # Resolve by the slash form; the physical name is only used for tables.
    component_schema = await resolver.resolve(component.key)
    errors = component_schema.validator.validate(body)
    if errors:
        logger.info("component_body_invalid component=%s violations=%s", component, len(errors))
        raise ValidationError(errors)
    if not isinstance(body, dict):
        raise ValidationError(
            [{"instancePath": "", "schemaPath": "#", "keyword": "type", "params": {"type": "object"}, "message": "must be object"}]
        )
    return component_schema


async def create_record(
    session: AsyncSession,
    resolver: SchemaResolver,
    component: ComponentName,
    body: Any,
) -> list[dict[str, Any]]:
    component_schema = await _validated_schema(resolver, component, body)
    return await ComponentStore(session).create(component, body, component_schema.schema)


async def update_record(
    session: AsyncSession,
    resolver: SchemaResolver,
    component: ComponentName,
    record_id: int,
    body: Any,
) -> list[dict[str, Any]]:
    component_schema = await _validated_schema(resolver, component, body)
    return await ComponentStore(session).update(component, record_id, body, component_schema.schema)
