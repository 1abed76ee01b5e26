"""
src/clincore/core/error_handlers.py

Exception handlers for the remedy engine API.

All errors return:
    {
        "error": {"code": "<STABLE_CODE>", "message": "<short message>"},
        "request_id": "<uuid | null>"
    }

Stack traces never reach the response body; unexpected errors are logged
server-side with the traceback.
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from clincore.remedy_engine.errors import EngineError

_log = logging.getLogger("clincore.errors")

_HTTP_CODES = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    503: "SERVICE_UNAVAILABLE",
}


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _err_body(code: str, message: str, request: Request) -> dict:
    return {
        "error": {"code": code, "message": message},
        "request_id": _request_id(request),
    }


def register_error_handlers(app: FastAPI, expose_validation_detail: bool = True) -> None:
    """Attach the error handlers to ``app``."""

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
        log = _log.error if exc.http_status >= 500 else _log.info
        log(
            "engine error code=%s status=%d path=%s",
            exc.code,
            exc.http_status,
            request.url.path,
            extra={"error_code": exc.code, "details": exc.details},
        )
        return JSONResponse(
            status_code=exc.http_status,
            content=_err_body(exc.code, exc.message, request),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = str(exc.detail) if exc.detail else "Request error"
        if exc.status_code >= 500:
            _log.error("HTTP %d %s path=%s", exc.status_code, detail, request.url.path)
        return JSONResponse(
            status_code=exc.status_code,
            content=_err_body(_HTTP_CODES.get(exc.status_code, "HTTP_ERROR"), detail, request),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        _log.warning("Validation error path=%s", request.url.path)
        body = _err_body("VALIDATION_ERROR", "Invalid request body or parameters", request)
        if expose_validation_detail:
            body["details"] = jsonable_encoder(exc.errors())
        return JSONResponse(status_code=422, content=body)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        _log.exception("Unhandled exception path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content=_err_body("INTERNAL_ERROR", "Unexpected server error", request),
        )
