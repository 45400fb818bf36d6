from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from scribe.apps.api.deps import close_schema_resolver
from scribe.apps.api.errors import (
    query_error_handler,
    request_validation_exception_handler,
    server_error_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_error_handler,
)
from scribe.apps.api.routes.components import router as components_router
from scribe.core.errors import QueryError, ScribeError, ValidationError
from scribe.core.logging import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    # Release the worker's schema cache connection on shutdown.
    await close_schema_resolver()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Scribe API", docs_url=None, redoc_url=None, openapi_url=None, lifespan=lifespan)

    @app.exception_handler(ValidationError)
    async def _validation_error_handler(request: Request, exc: ValidationError):
        return await validation_error_handler(request, exc)

    @app.exception_handler(QueryError)
    async def _query_error_handler(request: Request, exc: QueryError):
        return await query_error_handler(request, exc)

    @app.exception_handler(ScribeError)
    async def _server_error_handler(request: Request, exc: ScribeError):
        return await server_error_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _request_validation_exception_handler(request: Request, exc: RequestValidationError):
        return await request_validation_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    # Component paths are dynamic, so this router owns the whole namespace.
    app.include_router(components_router)
    return app


app = create_app()
