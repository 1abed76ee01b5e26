"""
src/clincore/core/logging.py

JSON structured logging + request/tenant contextvars.

Usage:
    from clincore.core.logging import setup_json_logging, request_id_ctx, tenant_id_ctx

    setup_json_logging("INFO")  # once at app startup

    request_id_ctx.set("some-uuid")
    tenant_id_ctx.set("tenant-uuid")

    _log.info("pool built", extra={"pool_size": 12})   # extras land in the JSON
"""
from __future__ import annotations

import json
import logging
import sys
import time
from contextvars import ContextVar
from typing import Any

__all__ = [
    "request_id_ctx",
    "tenant_id_ctx",
    "setup_json_logging",
    "JsonFormatter",
]

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")
tenant_id_ctx: ContextVar[str] = ContextVar("tenant_id", default="")

# attributes every LogRecord has; anything else came in through ``extra=``
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    Always: timestamp (UTC ISO-8601), level, logger, message, request_id,
    tenant_id. Plus any ``extra`` fields, and ``exc`` (type + detail, never a
    traceback) when the record carries exception info.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self._utc_iso(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_ctx.get(""),
            "tenant_id": tenant_id_ctx.get(""),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED and key not in payload:
                payload[key] = value

        if record.exc_info:
            exc_type, exc_val, _ = record.exc_info
            payload["exc"] = {
                "type": exc_type.__name__ if exc_type else "Unknown",
                "detail": str(exc_val),
            }

        return json.dumps(payload, ensure_ascii=False, default=str)

    @staticmethod
    def _utc_iso(created: float) -> str:
        t = time.gmtime(created)
        ms = int((created % 1) * 1000)
        return (
            f"{t.tm_year:04d}-{t.tm_mon:02d}-{t.tm_mday:02d}"
            f"T{t.tm_hour:02d}:{t.tm_min:02d}:{t.tm_sec:02d}.{ms:03d}Z"
        )


def setup_json_logging(level: str = "INFO") -> None:
    """Configure the root logger with the JSON formatter. Idempotent."""
    root = logging.getLogger()
    root.setLevel(level.upper())

    if any(isinstance(h.formatter, JsonFormatter) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
