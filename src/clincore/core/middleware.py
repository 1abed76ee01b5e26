"""
src/clincore/core/middleware.py

Request context middleware.

- reuses the client's X-Request-ID or generates a UUID4
- binds request_id / tenant_id (from X-Tenant-ID) to the logging contextvars
- echoes X-Request-ID on every response
- one access log line per request: method, path, status, duration_ms
"""
from __future__ import annotations

import time
import uuid
import logging
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from clincore.core.logging import request_id_ctx, tenant_id_ctx

_log = logging.getLogger("clincore.access")


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID", "").strip() or str(uuid.uuid4())
        tenant_id = request.headers.get("X-Tenant-ID", "").strip()

        token_rid = request_id_ctx.set(request_id)
        token_tid = tenant_id_ctx.set(tenant_id)
        request.state.request_id = request_id

        start = time.perf_counter()
        try:
            response: Response = await call_next(request)

            duration_ms = (time.perf_counter() - start) * 1000.0
            response.headers["X-Request-ID"] = request_id

            _log.info(
                "%s %s %d %.2fms",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            return response
        finally:
            request_id_ctx.reset(token_rid)
            tenant_id_ctx.reset(token_tid)
