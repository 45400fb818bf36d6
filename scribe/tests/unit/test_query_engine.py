from __future__ import annotations

from datetime import datetime, timezone

import pytest

from scribe.core.config import Settings
from scribe.core.errors import QueryError
from scribe.domain.components import ComponentName
from scribe.domain.query import QueryParams, ReferenceLookup, Traversal
from scribe.persistence.filters import FilterBuilder
from scribe.services import history
from scribe.services.query import DEPTH_COLUMN, PATH_COLUMN, QueryEngine


COLUMNS = {"id": "integer", "data": "json", "date_modified": "timestamp with time zone"}


class FakeResult:
    def __init__(self, rows: list[dict]) -> None:
        self._rows = rows

    def mappings(self):
        return iter(self._rows)


class DummySession:
    def __init__(self, rows: list[dict] | None = None) -> None:
        self.rows = rows or []
        self.statements: list[tuple[str, dict]] = []

    async def execute(self, statement, params=None):
        self.statements.append((str(statement), params or {}))
        return FakeResult(self.rows)

    async def rollback(self) -> None:
        return None


class UnusedSession:
    # Guard against DB access for queries that can never match.
    async def execute(self, *_args, **_kwargs):
        raise AssertionError("execute should not be called")


def _engine(session, monkeypatch, columns=COLUMNS) -> QueryEngine:
    engine = QueryEngine(session, settings=Settings(graph_max_depth=10))

    async def _columns(_table: str) -> dict[str, str]:
        return dict(columns)

    monkeypatch.setattr(engine._store, "columns", _columns)
    return engine


@pytest.mark.asyncio
async def test_empty_filter_list_short_circuits() -> None:
    engine = QueryEngine(UnusedSession(), settings=Settings())
    result = await engine.query(ComponentName.parse("foo"), QueryParams(filter={"id": []}))
    assert result == []


@pytest.mark.asyncio
async def test_missing_component_reads_as_empty(monkeypatch) -> None:
    engine = _engine(UnusedSession(), monkeypatch, columns={})
    assert await engine.query(ComponentName.parse("foo")) == []
    assert await engine.all_history(ComponentName.parse("foo")) == []


@pytest.mark.asyncio
async def test_select_serializes_rows_and_strips_depth(monkeypatch) -> None:
    stamp = datetime(2020, 1, 1, tzinfo=timezone.utc)
    row = {"id": 1, "data": {"parent": None}, "date_modified": stamp, DEPTH_COLUMN: 0, PATH_COLUMN: [1]}
    session = DummySession([row])
    engine = _engine(session, monkeypatch)
    rows = await engine.query(ComponentName.parse("foo"), QueryParams(parents=Traversal(id=1)))
    assert rows == [{"id": 1, "data": {"parent": None}, "date_modified": "2020-01-01T00:00:00+00:00"}]
    sql, params = session.statements[0]
    assert sql.startswith("WITH RECURSIVE lineage AS (")
    assert f"NOT step.id = ANY(lineage.{PATH_COLUMN})" in sql
    assert params["start1"] == 1
    assert params["depth2"] == 10


@pytest.mark.asyncio
async def test_read_one_filters_by_id(monkeypatch) -> None:
    session = DummySession([{"id": 4, "data": {}}])
    engine = _engine(session, monkeypatch)
    await engine.read_one(ComponentName.parse("foo", "bar"), 4)
    sql, params = session.statements[0]
    assert sql == 'SELECT * FROM "foo_bar" WHERE id = :id1 ORDER BY id'
    assert params == {"id1": 4}


def test_lineage_sql_directions() -> None:
    engine = QueryEngine(UnusedSession(), settings=Settings(graph_max_depth=3))
    component = ComponentName.parse("node")

    builder = FilterBuilder(COLUMNS)
    parents = engine._lineage_sql(component, "parents", Traversal(), builder, 7)
    assert "to_jsonb(step.id) = (CAST(lineage.\"data\" AS jsonb) #> CAST(:path3 AS text[]))" in parents
    assert builder.params["path3"] == ["parent"]

    builder = FilterBuilder(COLUMNS)
    children = engine._lineage_sql(component, "children", Traversal(key="data.owner"), builder, 7)
    assert "(CAST(step.\"data\" AS jsonb) #> CAST(:path3 AS text[])) = to_jsonb(lineage.id)" in children
    assert builder.params["path3"] == ["owner"]

    with pytest.raises(QueryError):
        engine._lineage_sql(component, "parents", Traversal(), FilterBuilder(COLUMNS), None)


def test_reference_sql_defaults_to_plural_key() -> None:
    engine = QueryEngine(UnusedSession(), settings=Settings())
    builder = FilterBuilder(COLUMNS)
    sql = engine._reference_sql(
        ComponentName.parse("post"),
        ComponentName.parse("author"),
        ReferenceLookup(component="author"),
        builder,
        3,
    )
    assert sql.startswith('SELECT * FROM "author" WHERE ')
    assert "@>" in sql
    assert builder.params["path1"] == ["posts"]
    assert builder.params["q2"] == "[3]"


@pytest.mark.asyncio
async def test_time_machine_and_group_by(monkeypatch) -> None:
    old = {"id": 1, "data": {"kind": "a"}, "date_modified": "2020-01-01T00:00:00+00:00"}
    new = {"id": 1, "data": {"kind": "b"}, "date_modified": "2020-06-01T00:00:00+00:00"}
    fresh = {"id": 2, "data": {"kind": "b"}, "date_modified": "2020-07-01T00:00:00+00:00"}
    patches = history.append_patch([history.diff_forward(old)], new, old)

    engine = QueryEngine(UnusedSession(), settings=Settings())

    async def _select(component, params, record_id):
        return [new, fresh], component

    async def _history(component, ids):
        assert ids == [1, 2]
        return {1: patches, 2: [history.diff_forward(fresh)]}

    monkeypatch.setattr(engine, "_select", _select)
    monkeypatch.setattr(engine._store, "read_history_raw", _history)

    at = datetime(2020, 3, 1, tzinfo=timezone.utc)
    params = QueryParams.from_sources(body={"timeMachine": {"key": "date_modified", "timestamp": at.isoformat()}})
    assert await engine.query(ComponentName.parse("foo"), params) == [old, None]

    params = params.model_copy(update={"group_by": "data.kind"})
    assert await engine.query(ComponentName.parse("foo"), params) == {"a": [old]}


@pytest.mark.asyncio
async def test_all_history_ignores_grouping(monkeypatch) -> None:
    first = {"id": 1, "title": "a"}
    second = {"id": 1, "title": "b"}
    engine = QueryEngine(UnusedSession(), settings=Settings())
    seen: list[QueryParams] = []

    async def _select(component, params, record_id):
        seen.append(params)
        return [second], component

    async def _history(component, ids):
        return {1: history.append_patch(None, second, first)}

    monkeypatch.setattr(engine, "_select", _select)
    monkeypatch.setattr(engine._store, "read_history_raw", _history)

    result = await engine.all_history(ComponentName.parse("foo"), QueryParams(group_by="title"))
    assert result == [{"id": 1, "history": [second, first]}]
    assert seen[0].group_by is None


@pytest.mark.asyncio
async def test_history_of_missing_record(monkeypatch) -> None:
    engine = QueryEngine(UnusedSession(), settings=Settings())

    async def _fetch_one(component, record_id):
        return None

    monkeypatch.setattr(engine._store, "fetch_one", _fetch_one)
    assert await engine.history(ComponentName.parse("foo"), 1) == []
