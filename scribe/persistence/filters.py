from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from scribe.core.errors import QueryError
from scribe.domain.components import quote_identifier
from scribe.domain.query import parse_timestamp, split_path


# Column types whose stored value is already JSON text.
_JSON_TEXT_TYPES = {"json", "jsonb", "text", "character varying"}
# Compared as instants rather than as their rendered text.
_TIMESTAMP_TYPES = {"timestamp with time zone", "timestamp without time zone"}


@dataclass
class FilterBuilder:
    """Accumulate WHERE clauses and bound parameters for one table.

    Every field path is checked against the table's real columns and nested
    path segments are bound as a ``text[]`` parameter, so caller input never
    becomes SQL text.
    """

    columns: dict[str, str]
    clauses: list[str] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)
    _counter: int = 0

    def bind(self, value: Any, prefix: str = "q") -> str:
        self._counter += 1
        name = f"{prefix}{self._counter}"
        self.params[name] = value
        return f":{name}"

    def json_expression(self, path: str, alias: str | None = None) -> str:
        """A jsonb expression for the value at a dotted path."""
        column, *rest = split_path(path)
        data_type = self.columns.get(column)
        if data_type is None:
            raise QueryError(f"Unknown field: {column}")
        reference = quote_identifier(column)
        if alias:
            reference = f"{alias}.{reference}"
        if data_type in _JSON_TEXT_TYPES:
            expression = f"CAST({reference} AS jsonb)"
        else:
            expression = f"to_jsonb({reference})"
        if rest:
            expression = f"({expression} #> CAST({self.bind(rest, 'path')} AS text[]))"
        return expression

    def add_equals_any(self, path: str, values: list[Any]) -> None:
        column, *rest = split_path(path)
        if not rest and self.columns.get(column) in _TIMESTAMP_TYPES:
            self._add_timestamp_any(column, values)
            return
        encoded = [json.dumps(value) for value in values]
        self.clauses.append(
            f"{self.json_expression(path)} = ANY(CAST(CAST({self.bind(encoded)} AS text[]) AS jsonb[]))"
        )

    def _add_timestamp_any(self, column: str, values: list[Any]) -> None:
        stamps = []
        for value in values:
            parsed = parse_timestamp(value)
            if parsed is None:
                raise QueryError(f"Invalid timestamp for {column}: {value!r}")
            stamps.append(parsed.isoformat())
        self.clauses.append(
            f"{quote_identifier(column)} = ANY(CAST(CAST({self.bind(stamps)} AS text[]) AS timestamptz[]))"
        )

    def add_contains(self, path: str, value: Any) -> None:
        self.clauses.append(
            f"{self.json_expression(path)} @> CAST(CAST({self.bind(json.dumps(value))} AS text) AS jsonb)"
        )

    def add_filter(self, filters: dict[str, Any] | None) -> None:
        for path, value in (filters or {}).items():
            values = value if isinstance(value, list) else [value]
            self.add_equals_any(path, values)

    def add_filter2(self, filters: dict[str, list[Any]] | None) -> None:
        for path, (operator, value) in (filters or {}).items():
            if operator == "contains":
                self.add_contains(path, value)
            elif operator == "is one of":
                self.add_equals_any(path, value if isinstance(value, list) else [value])
            else:
                raise QueryError(f"Unsupported filter2 operator: {operator}")

    def add_id(self, record_id: int) -> None:
        self.clauses.append(f"id = {self.bind(record_id, 'id')}")

    def where(self) -> str:
        if not self.clauses:
            return ""
        return " WHERE " + " AND ".join(self.clauses)
