from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from scribe.core.config import Settings, get_settings
from scribe.core.errors import QueryError, StoreError
from scribe.domain.components import ComponentName, pluralize, quote_identifier
from scribe.domain.query import (
    QueryParams,
    ReferenceLookup,
    TimeMachine,
    Traversal,
    group_rows,
    select_snapshot,
)
from scribe.persistence.filters import FilterBuilder
from scribe.persistence.store import ComponentStore, is_missing_relation, to_record
from scribe.services import history


logger = logging.getLogger(__name__)

DEPTH_COLUMN = "__traversal_depth"
PATH_COLUMN = "__traversal_path"

QueryResult = list[Any] | dict[str, list[dict[str, Any]]]


class QueryEngine:
    """Answer filter, graph, group-by and time-machine reads for components."""

    def __init__(self, session: AsyncSession, *, settings: Settings | None = None) -> None:
        self._session = session
        self._store = ComponentStore(session)
        self._settings = settings or get_settings()

    async def query(
        self,
        component: ComponentName,
        params: QueryParams | None = None,
        record_id: int | None = None,
    ) -> QueryResult:
        params = params or QueryParams()
        rows, source = await self._select(component, params, record_id)
        if params.time_machine is not None:
            rows = await self._time_machine(source, rows, params.time_machine)
        if params.group_by:
            return group_rows(rows, params.group_by)
        return rows

    async def read_one(
        self,
        component: ComponentName,
        record_id: int,
        params: QueryParams | None = None,
    ) -> QueryResult:
        return await self.query(component, params, record_id=record_id)

    async def history(self, component: ComponentName, record_id: int) -> list[dict[str, Any]]:
        """Every stored state of one record, most recent first."""
        try:
            current = await self._store.fetch_one(component, record_id)
            if current is None:
                return []
            raw = await self._store.read_history_raw(component, [record_id])
        except SQLAlchemyError as exc:
            logger.exception("component_history_failed component=%s id=%s", component, record_id)
            raise StoreError("Failed to get record") from exc
        return history.replay(raw.get(record_id, []), current)

    async def all_history(self, component: ComponentName, params: QueryParams | None = None) -> list[dict[str, Any]]:
        """History of every matching record as ``[{id, history}]``."""
        params = (params or QueryParams()).model_copy(update={"group_by": None, "time_machine": None})
        rows, source = await self._select(component, params, None)
        raw = await self._raw_history(source, rows)
        return [{"id": row["id"], "history": history.replay(raw.get(row["id"], []), row)} for row in rows]

    async def _select(
        self,
        component: ComponentName,
        params: QueryParams,
        record_id: int | None,
    ) -> tuple[list[dict[str, Any]], ComponentName]:
        traversal = params.traversal()
        source = component
        if traversal is not None and traversal[0] == "referenceComponent":
            source = ComponentName.parse(traversal[1].component)
        if params.matches_nothing():
            return [], source

        try:
            columns = await self._store.columns(source.table)
        except SQLAlchemyError as exc:
            logger.exception("component_columns_failed component=%s", source)
            raise StoreError("Failed to get record") from exc
        if not columns:
            # A component that was never written has no rows.
            return [], source

        builder = FilterBuilder(columns)
        builder.add_filter(params.filter)
        builder.add_filter2(params.filter2)

        if traversal is None:
            if record_id is not None:
                builder.add_id(record_id)
            sql = f"SELECT * FROM {quote_identifier(source.table)}{builder.where()} ORDER BY id"
        elif traversal[0] == "referenceComponent":
            sql = self._reference_sql(component, source, traversal[1], builder, record_id)
        else:
            sql = self._lineage_sql(component, traversal[0], traversal[1], builder, record_id)

        try:
            result = await self._session.execute(text(sql), builder.params)
        except DBAPIError as exc:
            if is_missing_relation(exc):
                await self._session.rollback()
                return [], source
            logger.exception("component_query_failed component=%s", source)
            raise StoreError("Failed to get record") from exc
        except SQLAlchemyError as exc:
            logger.exception("component_query_failed component=%s", source)
            raise StoreError("Failed to get record") from exc

        rows = []
        for row in result.mappings():
            record = to_record(row)
            record.pop(DEPTH_COLUMN, None)
            record.pop(PATH_COLUMN, None)
            rows.append(record)
        return rows, source

    def _lineage_sql(
        self,
        component: ComponentName,
        mode: str,
        traversal: Traversal,
        builder: FilterBuilder,
        record_id: int | None,
    ) -> str:
        start_id = traversal.id if traversal.id is not None else record_id
        if start_id is None:
            raise QueryError(f"{mode} requires an id")
        table = quote_identifier(component.table)
        start = builder.bind(start_id, "start")
        max_depth = builder.bind(self._settings.graph_max_depth, "depth")
        if mode == "parents":
            # The current row's link names the next row up.
            link = builder.json_expression(traversal.key, alias="lineage")
            step = f"JOIN lineage ON to_jsonb(step.id) = {link}"
        else:
            link = builder.json_expression(traversal.key, alias="step")
            step = f"JOIN lineage ON {link} = to_jsonb(lineage.id)"
        return (
            "WITH RECURSIVE lineage AS ("
            f"SELECT base.*, 0 AS {DEPTH_COLUMN}, ARRAY[base.id] AS {PATH_COLUMN} "
            f"FROM {table} AS base WHERE base.id = {start} "
            "UNION ALL "
            f"SELECT step.*, lineage.{DEPTH_COLUMN} + 1, lineage.{PATH_COLUMN} || step.id "
            f"FROM {table} AS step {step} "
            # Rows already on the path end the walk, so cycles yield each row once.
            f"WHERE lineage.{DEPTH_COLUMN} < {max_depth} AND NOT step.id = ANY(lineage.{PATH_COLUMN})"
            ")"
            f" SELECT * FROM lineage{builder.where()} ORDER BY {DEPTH_COLUMN}, id"
        )

    def _reference_sql(
        self,
        component: ComponentName,
        source: ComponentName,
        lookup: ReferenceLookup,
        builder: FilterBuilder,
        record_id: int | None,
    ) -> str:
        target_id = lookup.id if lookup.id is not None else record_id
        if target_id is None:
            raise QueryError("referenceComponent requires an id")
        key = lookup.key or f"data.{pluralize(component.leaf)}"
        builder.add_contains(key, [target_id])
        return f"SELECT * FROM {quote_identifier(source.table)}{builder.where()} ORDER BY id"

    async def _raw_history(self, component: ComponentName, rows: list[dict[str, Any]]) -> dict[int, list[str]]:
        try:
            return await self._store.read_history_raw(component, [row["id"] for row in rows])
        except SQLAlchemyError as exc:
            logger.exception("component_history_failed component=%s", component)
            raise StoreError("Failed to get records") from exc

    async def _time_machine(
        self,
        component: ComponentName,
        rows: list[dict[str, Any]],
        time_machine: TimeMachine,
    ) -> list[dict[str, Any] | None]:
        raw = await self._raw_history(component, rows)
        return [
            select_snapshot(history.replay(raw.get(row["id"], []), row), time_machine.key, time_machine.timestamp)
            for row in rows
        ]
