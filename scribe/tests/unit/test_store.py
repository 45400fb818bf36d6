from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import DBAPIError, OperationalError

from scribe.core.errors import StoreError
from scribe.domain.components import ComponentName
from scribe.persistence.store import ComponentStore, is_missing_relation, sqlstate, to_record


TITLE_ONLY = {"properties": {"title": {"type": "string"}}}


class FakeDriverError(Exception):
    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.sqlstate = code


class FailingSession:
    def __init__(self) -> None:
        self.rollbacks = 0
        self.statements: list[str] = []

    async def execute(self, statement, *_args, **_kwargs):
        self.statements.append(str(statement))
        raise OperationalError(str(statement), {}, Exception("connection lost"))

    async def commit(self) -> None:
        raise AssertionError("commit should not be reached")

    async def rollback(self) -> None:
        self.rollbacks += 1


def test_sqlstate_is_read_from_driver_error() -> None:
    exc = DBAPIError("SELECT 1", {}, FakeDriverError("42P01"))
    assert sqlstate(exc) == "42P01"
    assert is_missing_relation(exc)
    assert not is_missing_relation(DBAPIError("SELECT 1", {}, FakeDriverError("23505")))
    assert sqlstate(DBAPIError("SELECT 1", {}, Exception("no code"))) is None


def test_to_record_makes_rows_json_compatible() -> None:
    row = {"id": 1, "date_created": datetime(2020, 1, 2, tzinfo=timezone.utc), "score": Decimal("1.5")}
    assert to_record(row) == {"id": 1, "date_created": "2020-01-02T00:00:00+00:00", "score": 1.5}


@pytest.mark.asyncio
async def test_create_failure_returns_empty_result() -> None:
    session = FailingSession()
    store = ComponentStore(session)
    result = await store.create(ComponentName.parse("foo"), {"title": "a"}, TITLE_ONLY)
    assert result == []
    assert session.rollbacks == 1
    assert session.statements[0].startswith('CREATE TABLE IF NOT EXISTS "foo" (id serial PRIMARY KEY, "title" text)')


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "operation, message",
    [
        (lambda store, name: store.delete_one(name, 1), "Failed to delete record"),
        (lambda store, name: store.truncate(name), "Failed to delete records"),
        (lambda store, name: store.drop(name), "Failed to drop table"),
        (lambda store, name: store.update(name, 1, {"title": "a"}, TITLE_ONLY), "Failed to update record"),
    ],
)
async def test_write_failures_raise_store_error(operation, message) -> None:
    session = FailingSession()
    store = ComponentStore(session)
    with pytest.raises(StoreError) as excinfo:
        await operation(store, ComponentName.parse("foo", "bar"))
    assert str(excinfo.value) == message
    assert session.rollbacks == 1
