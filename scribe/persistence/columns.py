from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from scribe.domain.components import quote_identifier, validate_identifier


IDENTITY_COLUMN = "id"

# Bound values always arrive as their JSON text; each column type coerces from text.
_VALUE_EXPRESSIONS: dict[str, str] = {
    "integer": "CAST(CAST(:{param} AS text) AS integer)",
    "float8": "CAST(CAST(:{param} AS text) AS float8)",
    "timestamptz": "CAST(CAST(CAST(:{param} AS text) AS jsonb) #>> '{{}}' AS timestamptz)",
    "text": "CAST(:{param} AS text)",
    "json": "CAST(CAST(:{param} AS text) AS json)",
}


@dataclass(frozen=True)
class ColumnDef:
    name: str
    sql_type: str
    position: int

    @property
    def param(self) -> str:
        return f"p{self.position}"

    @property
    def quoted(self) -> str:
        return quote_identifier(self.name)

    @property
    def ddl(self) -> str:
        return f"{self.quoted} {self.sql_type}"

    @property
    def value_expression(self) -> str:
        return _VALUE_EXPRESSIONS[self.sql_type].format(param=self.param)

    def bind_value(self, data: dict[str, Any]) -> str | None:
        # Missing and null fields become SQL NULL; everything else is its JSON text.
        value = data.get(self.name)
        if value is None:
            return None
        if self.sql_type == "integer" and isinstance(value, float) and value.is_integer():
            # Schema validation accepts 2.0 as an integer; the column cast does not.
            value = int(value)
        return json.dumps(value)


def _sql_type(prop: Any) -> str | None:
    if not isinstance(prop, dict):
        return None
    prop_type = prop.get("type")
    if prop_type == "integer":
        return "integer"
    if prop_type == "string":
        if prop.get("format") == "date-time":
            return "timestamptz"
        return "text"
    if prop_type == "object":
        return "json"
    if prop_type == "number":
        return "float8"
    # Unknown or composite types are not materialized as columns.
    return None


def map_columns(schema: dict[str, Any]) -> list[ColumnDef]:
    """Derive ordered column definitions from a schema's top-level properties."""
    properties = schema.get("properties") or {}
    columns: list[ColumnDef] = []
    for name, prop in properties.items():
        if name == IDENTITY_COLUMN:
            continue
        sql_type = _sql_type(prop)
        if sql_type is None:
            continue
        validate_identifier(name, "column")
        columns.append(ColumnDef(name=name, sql_type=sql_type, position=len(columns) + 1))
    return columns


def bind_values(columns: list[ColumnDef], data: dict[str, Any]) -> dict[str, Any]:
    return {column.param: column.bind_value(data) for column in columns}
