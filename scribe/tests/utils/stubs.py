from __future__ import annotations

from typing import Any

from scribe.services.schema_compiler import compile_schema
from scribe.services.schema_resolver import ComponentSchema


TITLE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"id": {"type": "integer"}, "title": {"type": "string"}},
    "required": ["title"],
}


class StubResolver:
    # Serve one fixed schema for every component and remember what was asked for.
    def __init__(self, schema: dict[str, Any] | None = None) -> None:
        self.schema = TITLE_SCHEMA if schema is None else schema
        self.requested: list[str] = []

    async def resolve(self, component: str) -> ComponentSchema:
        self.requested.append(component)
        return ComponentSchema(schema=self.schema, validator=await compile_schema(self.schema))
