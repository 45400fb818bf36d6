from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from scribe.core.errors import InvalidIdentifierError


# PostgreSQL truncates identifiers beyond 63 bytes; keep room for the history suffix.
MAX_IDENTIFIER_LENGTH = 63
HISTORY_SUFFIX = "_history"
MAX_TABLE_LENGTH = MAX_IDENTIFIER_LENGTH - len(HISTORY_SUFFIX)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_identifier(name: Any, kind: str = "identifier", max_length: int = MAX_IDENTIFIER_LENGTH) -> str:
    # Reject anything that is not a plain identifier before it reaches SQL text.
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise InvalidIdentifierError(f"Invalid {kind} name: {name!r}")
    if len(name) > max_length:
        raise InvalidIdentifierError(f"{kind.capitalize()} name too long: {name!r}")
    return name


def quote_identifier(name: str) -> str:
    # Safe only for names that passed validate_identifier (no quotes possible).
    return f'"{validate_identifier(name)}"'


def pluralize(name: str) -> str:
    """Return a simple English plural of a component name."""
    if not name:
        return name
    lower = name.lower()
    if lower.endswith("y") and len(name) > 1 and lower[-2] not in "aeiou":
        return name[:-1] + "ies"
    if lower.endswith(("s", "x", "z", "ch", "sh")):
        return name + "es"
    return name + "s"


@dataclass(frozen=True)
class ComponentName:
    """A validated, possibly compound component name.

    ``key`` is the slash-joined form used for schema lookups, ``table`` the
    underscore-joined physical table, and ``history_table`` its paired history
    table.
    """

    segments: tuple[str, ...]

    @classmethod
    def parse(cls, component: str, subcomponent: str | None = None) -> ComponentName:
        raw = component if subcomponent is None else f"{component}/{subcomponent}"
        segments = tuple(raw.split("/"))
        for segment in segments:
            validate_identifier(segment, "component")
        name = cls(segments)
        validate_identifier(name.table, "component", MAX_TABLE_LENGTH)
        return name

    @property
    def key(self) -> str:
        return "/".join(self.segments)

    @property
    def table(self) -> str:
        return "_".join(self.segments)

    @property
    def history_table(self) -> str:
        return f"{self.table}{HISTORY_SUFFIX}"

    @property
    def leaf(self) -> str:
        return self.segments[-1]

    def __str__(self) -> str:
        return self.key
