# src/clincore/remedy_engine/errors.py
"""
Typed failures of the remedy suggestion pipeline.

Every failure carries a stable ``code`` (used by the HTTP error handlers and
in logs) plus a human-readable message. The engine never retries and never
returns partial results: a case either passes all six stages or fails with
exactly one of these.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class EngineError(Exception):
    code = "ENGINE_ERROR"
    http_status = 500

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class EmptyCase(EngineError):
    """No symptoms supplied; rejected before any matching work."""

    code = "EMPTY_CASE"
    http_status = 422


class InvalidWeight(EngineError):
    """A supplied symptom weight is non-positive or non-finite."""

    code = "INVALID_WEIGHT"
    http_status = 422


class InvalidSymptom(EngineError):
    """A symptom entry breaks the category invariants (e.g. modality without better/worse)."""

    code = "INVALID_SYMPTOM"
    http_status = 422


class ReferenceDataUnavailable(EngineError):
    """Rubric/remedy snapshot could not be obtained. Retry belongs to the caller."""

    code = "REFERENCE_DATA_UNAVAILABLE"
    http_status = 503


class NoMatches(EngineError):
    """Pipeline completed but no remedy qualified for suggestion."""

    code = "NO_MATCHES"
    http_status = 404

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message or "No suggestions found, consider adding more particulars",
            details,
        )
