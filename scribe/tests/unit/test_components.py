from __future__ import annotations

import pytest

from scribe.core.errors import InvalidIdentifierError
from scribe.domain.components import (
    MAX_TABLE_LENGTH,
    ComponentName,
    pluralize,
    quote_identifier,
    validate_identifier,
)


def test_simple_component_name() -> None:
    name = ComponentName.parse("foo")
    assert name.key == "foo"
    assert name.table == "foo"
    assert name.history_table == "foo_history"
    assert name.leaf == "foo"
    assert str(name) == "foo"


def test_compound_component_name_uses_slash_key_and_underscore_table() -> None:
    name = ComponentName.parse("foo", "bar")
    assert name.key == "foo/bar"
    assert name.table == "foo_bar"
    assert name.history_table == "foo_bar_history"
    assert name.leaf == "bar"
    assert ComponentName.parse("foo/bar") == name


@pytest.mark.parametrize(
    "raw",
    ["", "1foo", "foo-bar", 'foo"; DROP TABLE x; --', "foo bar", "foo//bar"],
)
def test_invalid_component_names_are_rejected(raw: str) -> None:
    with pytest.raises(InvalidIdentifierError):
        ComponentName.parse(raw)


def test_table_name_leaves_room_for_history_suffix() -> None:
    ComponentName.parse("a" * MAX_TABLE_LENGTH)
    with pytest.raises(InvalidIdentifierError):
        ComponentName.parse("a" * (MAX_TABLE_LENGTH + 1))


def test_quote_identifier_validates_before_quoting() -> None:
    assert quote_identifier("date_created") == '"date_created"'
    with pytest.raises(InvalidIdentifierError):
        quote_identifier('bad"name')
    with pytest.raises(InvalidIdentifierError):
        validate_identifier(None, "column")


def test_pluralize() -> None:
    assert pluralize("post") == "posts"
    assert pluralize("category") == "categories"
    assert pluralize("day") == "days"
    assert pluralize("box") == "boxes"
    assert pluralize("class") == "classes"
