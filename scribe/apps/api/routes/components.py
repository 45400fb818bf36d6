from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from scribe.apps.api.deps import component_name, get_db, get_schema_resolver, query_params, read_json_body
from scribe.domain.components import ComponentName
from scribe.persistence.store import ComponentStore
from scribe.services.query import QueryEngine
from scribe.services.records import create_record, update_record
from scribe.services.schema_resolver import SchemaResolver


router = APIRouter(tags=["components"])


async def _list(name: ComponentName, request: Request, db: AsyncSession) -> Any:
    return await QueryEngine(db).query(name, await query_params(request))


async def _all_history(name: ComponentName, request: Request, db: AsyncSession) -> Any:
    return await QueryEngine(db).all_history(name, await query_params(request))


async def _read_one(name: ComponentName, record_id: int, request: Request, db: AsyncSession) -> Any:
    return await QueryEngine(db).read_one(name, record_id, await query_params(request))


async def _create(name: ComponentName, request: Request, db: AsyncSession, resolver: SchemaResolver) -> Any:
    return await create_record(db, resolver, name, await read_json_body(request))


async def _update(
    name: ComponentName,
    record_id: int,
    request: Request,
    db: AsyncSession,
    resolver: SchemaResolver,
) -> Any:
    return await update_record(db, resolver, name, record_id, await read_json_body(request))


@router.get("/")
async def liveness() -> Response:
    return Response(status_code=200)


# Literal segments ("all", "history") and int ids are registered before the
# catch-all compound paths so they win the match.
@router.get("/{component}/all/history")
async def all_history(component: str, request: Request, db: AsyncSession = Depends(get_db)) -> Any:
    return await _all_history(component_name(component), request, db)


@router.api_route("/{component}/all", methods=["GET", "POST"])
async def list_records(component: str, request: Request, db: AsyncSession = Depends(get_db)) -> Any:
    return await _list(component_name(component), request, db)


@router.delete("/{component}/all")
async def truncate_component(component: str, db: AsyncSession = Depends(get_db)) -> Any:
    return await ComponentStore(db).truncate(component_name(component))


@router.get("/{component}/{record_id:int}/history")
async def record_history(component: str, record_id: int, db: AsyncSession = Depends(get_db)) -> Any:
    return await QueryEngine(db).history(component_name(component), record_id)


@router.get("/{component}/{record_id:int}")
async def read_record(component: str, record_id: int, request: Request, db: AsyncSession = Depends(get_db)) -> Any:
    return await _read_one(component_name(component), record_id, request, db)


@router.put("/{component}/{record_id:int}")
async def replace_record(
    component: str,
    record_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    resolver: SchemaResolver = Depends(get_schema_resolver),
) -> Any:
    return await _update(component_name(component), record_id, request, db, resolver)


@router.delete("/{component}/{record_id:int}")
async def delete_record(component: str, record_id: int, db: AsyncSession = Depends(get_db)) -> Any:
    return await ComponentStore(db).delete_one(component_name(component), record_id)


@router.get("/{component}/{subcomponent}/all/history")
async def sub_all_history(
    component: str,
    subcomponent: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Any:
    return await _all_history(component_name(component, subcomponent), request, db)


@router.api_route("/{component}/{subcomponent}/all", methods=["GET", "POST"])
async def sub_list_records(
    component: str,
    subcomponent: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Any:
    return await _list(component_name(component, subcomponent), request, db)


@router.delete("/{component}/{subcomponent}/all")
async def sub_truncate_component(component: str, subcomponent: str, db: AsyncSession = Depends(get_db)) -> Any:
    return await ComponentStore(db).truncate(component_name(component, subcomponent))


@router.get("/{component}/{subcomponent}/{record_id:int}/history")
async def sub_record_history(
    component: str,
    subcomponent: str,
    record_id: int,
    db: AsyncSession = Depends(get_db),
) -> Any:
    return await QueryEngine(db).history(component_name(component, subcomponent), record_id)


@router.get("/{component}/{subcomponent}/{record_id:int}")
async def sub_read_record(
    component: str,
    subcomponent: str,
    record_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Any:
    return await _read_one(component_name(component, subcomponent), record_id, request, db)


@router.put("/{component}/{subcomponent}/{record_id:int}")
async def sub_replace_record(
    component: str,
    subcomponent: str,
    record_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    resolver: SchemaResolver = Depends(get_schema_resolver),
) -> Any:
    return await _update(component_name(component, subcomponent), record_id, request, db, resolver)


@router.delete("/{component}/{subcomponent}/{record_id:int}")
async def sub_delete_record(
    component: str,
    subcomponent: str,
    record_id: int,
    db: AsyncSession = Depends(get_db),
) -> Any:
    return await ComponentStore(db).delete_one(component_name(component, subcomponent), record_id)


@router.post("/{component}/{subcomponent}")
async def sub_create_record(
    component: str,
    subcomponent: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    resolver: SchemaResolver = Depends(get_schema_resolver),
) -> Any:
    return await _create(component_name(component, subcomponent), request, db, resolver)


@router.delete("/{component}/{subcomponent}")
async def sub_drop_component(component: str, subcomponent: str, db: AsyncSession = Depends(get_db)) -> Any:
    return await ComponentStore(db).drop(component_name(component, subcomponent))


@router.post("/{component}")
async def create_component_record(
    component: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    resolver: SchemaResolver = Depends(get_schema_resolver),
) -> Any:
    return await _create(component_name(component), request, db, resolver)


@router.delete("/{component}")
async def drop_component(component: str, db: AsyncSession = Depends(get_db)) -> Any:
    return await ComponentStore(db).drop(component_name(component))
