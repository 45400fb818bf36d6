from __future__ import annotations

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from scribe.core.errors import StoreError
from scribe.domain.components import ComponentName, quote_identifier
from scribe.persistence.columns import ColumnDef, bind_values, map_columns
from scribe.services import history


logger = logging.getLogger(__name__)

UNDEFINED_TABLE = "42P01"


def sqlstate(exc: BaseException) -> str | None:
    # asyncpg exposes SQLSTATE on the adapted error and on its cause.
    orig = getattr(exc, "orig", exc)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def is_missing_relation(exc: BaseException) -> bool:
    return sqlstate(exc) == UNDEFINED_TABLE


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def to_record(row: Mapping[str, Any]) -> dict[str, Any]:
    """Convert a result row into a JSON-compatible record."""
    return {key: _jsonable(value) for key, value in row.items()}


def _json_param(value: Any) -> str:
    return json.dumps(value)


def _patch_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = json.loads(value)
    return list(value)


class ComponentStore:
    """Physical lifecycle of a component's primary and history tables."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def columns(self, table: str) -> dict[str, str]:
        # Ordered column name -> data type; empty when the table does not exist.
        result = await self._session.execute(
            text(
                "SELECT column_name, data_type FROM information_schema.columns "
                "WHERE table_schema = current_schema() AND table_name = :table "
                "ORDER BY ordinal_position"
            ),
            {"table": table},
        )
        return {row.column_name: row.data_type for row in result}

    async def _ensure_tables(self, component: ComponentName, columns: list[ColumnDef]) -> None:
        table = quote_identifier(component.table)
        history_table = quote_identifier(component.history_table)
        column_ddl = "".join(f", {column.ddl}" for column in columns)
        await self._session.execute(text(f"CREATE TABLE IF NOT EXISTS {table} (id serial PRIMARY KEY{column_ddl})"))
        await self._session.execute(
            text(
                f"CREATE TABLE IF NOT EXISTS {history_table} ("
                "id serial PRIMARY KEY, "
                f"foreignkey integer REFERENCES {table} (id) ON DELETE CASCADE, "
                "patches json)"
            )
        )

    async def _ensure_columns(self, component: ComponentName, columns: list[ColumnDef]) -> None:
        # Additive migration only; existing columns are never altered or dropped.
        if not columns:
            return
        additions = ", ".join(f"ADD COLUMN IF NOT EXISTS {column.ddl}" for column in columns)
        await self._session.execute(text(f"ALTER TABLE {quote_identifier(component.table)} {additions}"))

    async def _insert_history(self, component: ComponentName, record_id: int, patches: list[str]) -> None:
        await self._session.execute(
            text(
                f"INSERT INTO {quote_identifier(component.history_table)} (foreignkey, patches) "
                "VALUES (:foreignkey, CAST(CAST(:patches AS text) AS json))"
            ),
            {"foreignkey": record_id, "patches": _json_param(patches)},
        )

    async def create(
        self,
        component: ComponentName,
        data: dict[str, Any],
        schema: dict[str, Any],
    ) -> list[dict[str, Any]]:
        columns = map_columns(schema)
        table = quote_identifier(component.table)
        if columns:
            names = ", ".join(column.quoted for column in columns)
            values = ", ".join(column.value_expression for column in columns)
            insert_sql = f"INSERT INTO {table} ({names}) VALUES ({values}) RETURNING *"
        else:
            insert_sql = f"INSERT INTO {table} DEFAULT VALUES RETURNING *"
        try:
            await self._ensure_tables(component, columns)
            await self._ensure_columns(component, columns)
            # DDL commits on its own; a later insert failure leaves the tables in place.
            await self._session.commit()
            result = await self._session.execute(text(insert_sql), bind_values(columns, data))
            record = to_record(result.mappings().one())
            await self._insert_history(component, record["id"], [history.diff_forward(record)])
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            logger.exception("component_create_failed component=%s", component)
            return []
        return [record]

    async def update(
        self,
        component: ComponentName,
        record_id: int,
        data: dict[str, Any],
        schema: dict[str, Any],
    ) -> list[dict[str, Any]]:
        columns = map_columns(schema)
        table = quote_identifier(component.table)
        history_table = quote_identifier(component.history_table)
        try:
            await self._ensure_columns(component, columns)
            await self._session.commit()

            # Row locks serialize concurrent updates of the same record and its history.
            old_row = (
                await self._session.execute(
                    text(f"SELECT * FROM {table} WHERE id = :id FOR UPDATE"),
                    {"id": record_id},
                )
            ).mappings().first()
            if old_row is None:
                await self._session.rollback()
                return []
            history_row = (
                await self._session.execute(
                    text(f"SELECT id, patches FROM {history_table} WHERE foreignkey = :id FOR UPDATE"),
                    {"id": record_id},
                )
            ).mappings().first()

            if columns:
                assignments = ", ".join(f"{column.quoted} = {column.value_expression}" for column in columns)
                params = bind_values(columns, data)
                params["id"] = record_id
                new_row = (
                    await self._session.execute(
                        text(f"UPDATE {table} SET {assignments} WHERE id = :id RETURNING *"),
                        params,
                    )
                ).mappings().one()
            else:
                new_row = old_row

            old_record = to_record(old_row)
            new_record = to_record(new_row)
            existing = _patch_list(history_row["patches"]) if history_row is not None else None
            patches = history.append_patch(existing, new_record, old_record)
            if history_row is not None:
                await self._session.execute(
                    text(f"UPDATE {history_table} SET patches = CAST(CAST(:patches AS text) AS json) WHERE id = :id"),
                    {"patches": _json_param(patches), "id": history_row["id"]},
                )
            else:
                await self._insert_history(component, record_id, patches)
            await self._session.commit()
        except DBAPIError as exc:
            await self._session.rollback()
            if is_missing_relation(exc):
                # Nothing was ever written for this component, so there is no target row.
                return []
            logger.exception("component_update_failed component=%s id=%s", component, record_id)
            raise StoreError("Failed to update record") from exc
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.exception("component_update_failed component=%s id=%s", component, record_id)
            raise StoreError("Failed to update record") from exc
        return [new_record]

    async def delete_one(self, component: ComponentName, record_id: int) -> list[dict[str, Any]]:
        # History rows go with the record through the cascading foreign key.
        await self._execute_write(
            f"DELETE FROM {quote_identifier(component.table)} WHERE id = :id",
            {"id": record_id},
            failure="Failed to delete record",
            event="component_delete_failed",
            component=component,
        )
        return []

    async def truncate(self, component: ComponentName) -> list[dict[str, Any]]:
        await self._execute_write(
            f"TRUNCATE {quote_identifier(component.table)} RESTART IDENTITY CASCADE",
            {},
            failure="Failed to delete records",
            event="component_truncate_failed",
            component=component,
        )
        return []

    async def drop(self, component: ComponentName) -> list[dict[str, Any]]:
        await self._execute_write(
            f"DROP TABLE IF EXISTS {quote_identifier(component.table)}, "
            f"{quote_identifier(component.history_table)}",
            {},
            failure="Failed to drop table",
            event="component_drop_failed",
            component=component,
        )
        return []

    async def _execute_write(
        self,
        sql: str,
        params: dict[str, Any],
        *,
        failure: str,
        event: str,
        component: ComponentName,
    ) -> None:
        try:
            await self._session.execute(text(sql), params)
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.exception("%s component=%s", event, component)
            raise StoreError(failure) from exc

    async def fetch_one(self, component: ComponentName, record_id: int) -> dict[str, Any] | None:
        try:
            row = (
                await self._session.execute(
                    text(f"SELECT * FROM {quote_identifier(component.table)} WHERE id = :id"),
                    {"id": record_id},
                )
            ).mappings().first()
        except DBAPIError as exc:
            if is_missing_relation(exc):
                await self._session.rollback()
                return None
            raise
        return to_record(row) if row is not None else None

    async def read_history_raw(self, component: ComponentName, record_ids: list[int]) -> dict[int, list[str]]:
        """Stored patch lists keyed by record id, fetched in one query."""
        if not record_ids:
            return {}
        try:
            result = await self._session.execute(
                text(
                    f"SELECT foreignkey, patches FROM {quote_identifier(component.history_table)} "
                    "WHERE foreignkey = ANY(:ids)"
                ),
                {"ids": list(record_ids)},
            )
        except DBAPIError as exc:
            if is_missing_relation(exc):
                await self._session.rollback()
                return {}
            raise
        return {row.foreignkey: _patch_list(row.patches) for row in result}
