from __future__ import annotations

import pytest

from scribe.core.errors import ValidationError
from scribe.domain.components import ComponentName
from scribe.persistence.store import ComponentStore
from scribe.services import records
from scribe.tests.utils.stubs import TITLE_SCHEMA as SCHEMA, StubResolver


class DummySession:
    async def execute(self, *_args, **_kwargs):
        raise AssertionError("invalid bodies must not reach the store")


@pytest.mark.asyncio
async def test_invalid_body_is_rejected_before_store() -> None:
    resolver = StubResolver(SCHEMA)
    with pytest.raises(ValidationError) as excinfo:
        await records.create_record(DummySession(), resolver, ComponentName.parse("foo", "bar"), {"title": 1})
    assert resolver.requested == ["foo/bar"]
    assert excinfo.value.errors[0]["instancePath"] == "/title"


@pytest.mark.asyncio
async def test_non_object_body_is_rejected() -> None:
    resolver = StubResolver({})
    with pytest.raises(ValidationError) as excinfo:
        await records.update_record(DummySession(), resolver, ComponentName.parse("foo"), 1, [1, 2])
    assert excinfo.value.errors[0]["keyword"] == "type"


@pytest.mark.asyncio
async def test_valid_body_is_written_with_resolved_schema(monkeypatch) -> None:
    calls: list[tuple] = []

    async def _create(self, component, data, schema):
        calls.append(("create", component.table, data, schema))
        return [{"id": 1, **data}]

    async def _update(self, component, record_id, data, schema):
        calls.append(("update", component.table, record_id, data))
        return []

    monkeypatch.setattr(ComponentStore, "create", _create)
    monkeypatch.setattr(ComponentStore, "update", _update)
    resolver = StubResolver(SCHEMA)
    component = ComponentName.parse("foo", "bar")

    created = await records.create_record(DummySession(), resolver, component, {"title": "a"})
    assert created == [{"id": 1, "title": "a"}]
    assert calls[0] == ("create", "foo_bar", {"title": "a"}, SCHEMA)

    assert await records.update_record(DummySession(), resolver, component, 9, {"title": "b"}) == []
    assert calls[1] == ("update", "foo_bar", 9, {"title": "b"})
