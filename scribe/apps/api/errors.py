from __future__ import annotations

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from scribe.core.errors import (
    HistoryError,
    QueryError,
    SchemaResolutionError,
    ScribeError,
    StoreError,
    ValidationError,
)


logger = logging.getLogger(__name__)

UNHANDLED_ROUTE = "Unhandled Route"


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    # Echo the validator's violation list so clients can fix the body.
    return JSONResponse(content=exc.errors, status_code=400)


async def query_error_handler(request: Request, exc: QueryError) -> PlainTextResponse:
    return PlainTextResponse(str(exc), status_code=400)


async def server_error_handler(request: Request, exc: ScribeError) -> PlainTextResponse:
    # Store, history and schema resolution failures are scoped to this request.
    if isinstance(exc, (StoreError, HistoryError, SchemaResolutionError)):
        message = str(exc)
    else:
        message = "Internal Server Error"
    logger.warning("request_failed path=%s error=%s", request.url.path, type(exc).__name__)
    return PlainTextResponse(message, status_code=500)


async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    # Unknown paths and methods are client errors, not missing resources.
    if exc.status_code in (404, 405):
        return PlainTextResponse(UNHANDLED_ROUTE, status_code=400)
    return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(content={"detail": exc.errors()}, status_code=400)


async def unhandled_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
    # Avoid leaking stack traces; return a stable internal error body.
    logger.exception("request_unhandled_error path=%s", request.url.path)
    return PlainTextResponse("Internal Server Error", status_code=500)
