from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from scribe.core.errors import QueryError


FILTER2_OPERATORS = ("contains", "is one of")
TRAVERSAL_MODES = ("parents", "children", "referenceComponent")
DEFAULT_PARENT_KEY = "data.parent"

# Field names as they appear in query strings and request bodies.
PARAM_NAMES = ("filter", "filter2", "groupBy", "timeMachine", "parents", "children", "referenceComponent")
_JSON_PARAMS = {"filter", "filter2", "timeMachine", "parents", "children"}


class TimeMachine(BaseModel):
    key: str
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class Traversal(BaseModel):
    # Walk a self-referential integer path starting from id (or the route id).
    id: int | None = None
    key: str = DEFAULT_PARENT_KEY


class ReferenceLookup(BaseModel):
    # Rows of another component whose array at key contains id.
    component: str
    id: int | None = None
    key: str | None = None


def _traversal_shorthand(value: Any) -> Any:
    if value is True:
        return {}
    if isinstance(value, int) and not isinstance(value, bool):
        return {"id": value}
    return value


class QueryParams(BaseModel):
    """Normalized read parameters shared by every query entry point."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    filter: dict[str, Any] | None = None
    filter2: dict[str, list[Any]] | None = None
    group_by: str | None = Field(default=None, alias="groupBy")
    time_machine: TimeMachine | None = Field(default=None, alias="timeMachine")
    parents: Traversal | None = None
    children: Traversal | None = None
    reference_component: ReferenceLookup | None = Field(default=None, alias="referenceComponent")

    @field_validator("filter2")
    @classmethod
    def _check_operators(cls, value: dict[str, list[Any]] | None) -> dict[str, list[Any]] | None:
        if value is None:
            return value
        for key, pair in value.items():
            if len(pair) != 2:
                raise ValueError(f"filter2 entry for {key} must be [operator, value]")
            if pair[0] not in FILTER2_OPERATORS:
                raise ValueError(f"Unsupported filter2 operator: {pair[0]}")
        return value

    @field_validator("parents", "children", mode="before")
    @classmethod
    def _expand_traversal(cls, value: Any) -> Any:
        return _traversal_shorthand(value)

    @field_validator("reference_component", mode="before")
    @classmethod
    def _expand_reference(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"component": value}
        return value

    @classmethod
    def from_sources(cls, query: Mapping[str, Any] | None = None, body: Any = None) -> QueryParams:
        """Merge body fields with query-string values; the query string wins."""
        merged: dict[str, Any] = {}
        sources: list[Mapping[str, Any]] = []
        if isinstance(body, Mapping):
            sources.append(body)
        if query:
            sources.append(query)
        for source in sources:
            for name in PARAM_NAMES:
                if name in source and source[name] is not None:
                    merged[name] = _decode(name, source[name])
        try:
            return cls.model_validate(merged)
        except ValidationError as exc:
            message = "; ".join(_describe(error) for error in exc.errors())
            raise QueryError(f"Malformed query parameters: {message}") from exc

    def traversal(self) -> tuple[str, Traversal | ReferenceLookup] | None:
        requested = [
            (name, spec)
            for name, spec in (
                ("parents", self.parents),
                ("children", self.children),
                ("referenceComponent", self.reference_component),
            )
            if spec is not None
        ]
        if len(requested) > 1:
            raise QueryError("Only one of parents, children or referenceComponent may be requested")
        return requested[0] if requested else None

    def matches_nothing(self) -> bool:
        # An empty value list for any filter key can never match a row.
        for value in (self.filter or {}).values():
            if isinstance(value, list) and not value:
                return True
        for _operator, value in (self.filter2 or {}).values():
            if isinstance(value, list) and not value:
                return True
        return False


def _decode(name: str, value: Any) -> Any:
    if not isinstance(value, str) or name == "groupBy":
        return value
    if name == "referenceComponent" and not value.lstrip().startswith("{"):
        return value
    try:
        return json.loads(value)
    except ValueError as exc:
        if name in _JSON_PARAMS:
            raise QueryError(f"Failed to parse {name}") from exc
        return value


def _describe(error: Mapping[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))


def split_path(path: str) -> list[str]:
    parts = path.split(".")
    if any(not part for part in parts):
        raise QueryError(f"Invalid field path: {path!r}")
    return parts


def resolve_path(value: Any, path: str) -> Any:
    """Follow a dotted path through nested mappings and lists."""
    current = value
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
        if current is None:
            return None
    return current


def group_key(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


def group_rows(rows: Iterable[dict[str, Any] | None], path: str) -> dict[str, list[dict[str, Any]]]:
    grouped: dict[str, list[dict[str, Any]]] = {}
    for row in rows:
        if row is None:
            continue
        grouped.setdefault(group_key(resolve_path(row, path)), []).append(row)
    return grouped


def parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def select_snapshot(snapshots: list[dict[str, Any]], key: str, at: datetime) -> dict[str, Any] | None:
    """Pick the snapshot whose timestamp at key is the latest one not after ``at``."""
    best: dict[str, Any] | None = None
    best_at: datetime | None = None
    for snapshot in snapshots:
        stamp = parse_timestamp(resolve_path(snapshot, key))
        if stamp is None or stamp > at:
            continue
        if best_at is None or stamp > best_at:
            best, best_at = snapshot, stamp
    return best
