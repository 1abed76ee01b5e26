# src/clincore/api/suggest_router.py
from __future__ import annotations

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request

from clincore.api.schemas import (
    CaseUpdateResponse,
    DecisionRequest,
    OutcomeRequest,
    OutcomeStatsResponse,
    ReferenceVersionResponse,
    SuggestRequest,
    SuggestResponse,
)
from clincore.remedy_engine.case_records import CaseRecordStore
from clincore.remedy_engine.models import PriorChoice
from clincore.remedy_engine.narrative import NarrativeGenerator
from clincore.remedy_engine.pipeline import RemedySuggestionEngine

router = APIRouter(prefix="/remedies", tags=["remedies"])
_log = logging.getLogger("clincore.api.remedies")


def _engine(request: Request) -> RemedySuggestionEngine:
    return request.app.state.engine


def _store(request: Request) -> Optional[CaseRecordStore]:
    return getattr(request.app.state, "case_store", None)


def _tenant_id(x_tenant_id: Optional[str]) -> Optional[str]:
    """Canonical tenant UUID from the header, None when absent."""
    if not x_tenant_id or not x_tenant_id.strip():
        return None
    try:
        return str(uuid.UUID(x_tenant_id.strip()))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid X-Tenant-ID header")


def _require_store(request: Request, x_tenant_id: Optional[str]) -> tuple[CaseRecordStore, str]:
    tenant_id = _tenant_id(x_tenant_id)
    if tenant_id is None:
        raise HTTPException(status_code=400, detail="Missing X-Tenant-ID header")
    store = _store(request)
    if store is None:
        raise HTTPException(status_code=503, detail="Case record store is not configured")
    return store, tenant_id


@router.post("/suggest", response_model=SuggestResponse)
async def suggest(
    payload: SuggestRequest,
    request: Request,
    x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-ID"),
):
    engine = _engine(request)
    store = _store(request)
    tenant_id = _tenant_id(x_tenant_id)
    params = engine.params
    case_payload = payload.case.model_dump(by_alias=True)

    # history is loaded before the pipeline starts, persistence runs after it ends
    prior: List[PriorChoice] = []
    if store is not None and tenant_id and payload.patient_id:
        prior = await store.recent_unfavorable_choices(
            tenant_id,
            payload.patient_id,
            params.repetition_window_days,
            params.unfavorable_outcomes,
        )

    result = engine.suggest_payload(
        case_payload,
        prior_choices=prior,
        repertory_source=payload.repertory_source,
        top_n=payload.top_n,
    )

    case_record_id = None
    if store is not None and tenant_id and getattr(request.app.state, "persist_case_records", True):
        case_record_id = await store.save_case_record(
            tenant_id,
            payload.patient_id,
            payload.model_dump(by_alias=True),
            result,
            params.version,
        )

    narrative = None
    generator: Optional[NarrativeGenerator] = getattr(request.app.state, "narrative", None)
    if payload.include_narrative and generator is not None:
        narrative = generator.render(result)

    body = result.to_dict()
    body.update(
        {
            "caseRecordId": case_record_id,
            "narrative": narrative,
            "requestId": getattr(request.state, "request_id", None),
        }
    )
    return body


@router.post("/cases/{case_id}/decision", response_model=CaseUpdateResponse)
async def record_decision(
    case_id: str,
    payload: DecisionRequest,
    request: Request,
    x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-ID"),
):
    store, tenant_id = _require_store(request, x_tenant_id)
    ok = await store.record_doctor_decision(
        tenant_id,
        case_id,
        payload.chosen_remedy,
        potency=payload.potency,
        repetition=payload.repetition,
        notes=payload.notes,
    )
    if not ok:
        raise HTTPException(status_code=404, detail="Case record not found")
    _log.info("doctor decision recorded case=%s remedy=%s", case_id, payload.chosen_remedy)
    return {"caseRecordId": case_id, "status": "decided"}


@router.post("/cases/{case_id}/outcome", response_model=CaseUpdateResponse)
async def record_outcome(
    case_id: str,
    payload: OutcomeRequest,
    request: Request,
    x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-ID"),
):
    store, tenant_id = _require_store(request, x_tenant_id)
    ok = await store.record_outcome(tenant_id, case_id, payload.outcome_status, notes=payload.notes)
    if not ok:
        raise HTTPException(status_code=409, detail="Case record not found or no decision recorded")
    _log.info("outcome recorded case=%s status=%s", case_id, payload.outcome_status)
    return {"caseRecordId": case_id, "status": payload.outcome_status}


@router.get("/{remedy_id}/outcome-stats", response_model=OutcomeStatsResponse)
async def remedy_outcome_stats(
    remedy_id: str,
    request: Request,
    since_days: Optional[int] = Query(default=None, alias="sinceDays", ge=1),
    x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-ID"),
):
    store, tenant_id = _require_store(request, x_tenant_id)
    # decisions may be recorded by id or by name
    remedy = _engine(request).cache.get().remedies_by_id.get(remedy_id)
    aliases = [remedy.name] if remedy is not None else []
    stats = await store.remedy_outcome_stats(tenant_id, remedy_id, aliases=aliases, since_days=since_days)
    return stats.to_dict()


@router.post("/reference/invalidate", response_model=ReferenceVersionResponse)
async def invalidate_reference(request: Request):
    snapshot = _engine(request).cache.invalidate()
    return {
        "version": snapshot.version,
        "rubrics": len(snapshot.rubrics),
        "remedies": len(snapshot.remedies),
    }
