# src/clincore/remedy_engine/case_records.py
"""
Case record writer.

Persists what the engine suggested, what the doctor chose and how the
patient did. The same table feeds the repetition warning: previous choices
with an unfavourable outcome inside the recency window come back as
``PriorChoice`` rows. Per-remedy outcome counts (``OutcomeStats``) come
from the same rows.

Each record carries ``result_signature``: SHA-256 over the canonical JSON of
the ranking snapshot, so a stored suggestion can later be re-verified by
replaying the case against the same reference version.
"""
from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from sqlalchemy import text

from clincore.db import tenant_session
from clincore.remedy_engine.models import NormalizedCase, PriorChoice, SuggestionResult
from clincore.remedy_engine.text import fold

_log = logging.getLogger("clincore.remedy_engine.case_records")

OUTCOME_STATUSES = ("improved", "no_change", "worsened", "not_followed")


def ranking_snapshot(result: SuggestionResult) -> List[Dict[str, Any]]:
    return [
        {"rank": i, "remedy": s.remedy_id, "score": s.match_score, "confidence": s.confidence}
        for i, s in enumerate(result.top_remedies, start=1)
    ]


def result_signature(result: SuggestionResult) -> str:
    canonical_payload = json.dumps(
        ranking_snapshot(result),
        sort_keys=True,
        separators=(",", ":"),
    ).encode("utf-8")
    return hashlib.sha256(canonical_payload).hexdigest()


def case_to_dict(case: NormalizedCase) -> Dict[str, Any]:
    return {
        "symptoms": [
            {
                "category": s.category,
                "text": s.text,
                "location": s.location,
                "sensation": s.sensation,
                "type": s.modality_type,
                "weight": s.weight,
            }
            for s in case.symptoms
        ],
        "pathologyTags": case.sorted_tags(),
        "isAcute": case.is_acute,
        "isChronic": case.is_chronic,
    }


def validate_outcome(status: str) -> str:
    if status not in OUTCOME_STATUSES:
        raise ValueError(f"outcome_status must be one of {list(OUTCOME_STATUSES)}")
    return status


@dataclass(frozen=True)
class OutcomeStats:
    """Recorded outcomes for one remedy across a tenant's patients."""

    remedy: str
    total_cases: int
    improved: int
    no_change: int
    worsened: int
    not_followed: int

    @property
    def success_rate(self) -> float:
        if not self.total_cases:
            return 0.0
        return round(self.improved / self.total_cases * 100.0, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "remedy": self.remedy,
            "totalCases": self.total_cases,
            "improved": self.improved,
            "noChange": self.no_change,
            "worsened": self.worsened,
            "notFollowed": self.not_followed,
            "successRate": self.success_rate,
        }


def outcome_stats(remedy: str, counts: Mapping[str, int]) -> OutcomeStats:
    """Fold per-status counts into ``OutcomeStats``; unknown statuses are ignored."""
    by_status = {s: int(counts.get(s, 0)) for s in OUTCOME_STATUSES}
    return OutcomeStats(
        remedy=remedy,
        total_cases=sum(by_status.values()),
        improved=by_status["improved"],
        no_change=by_status["no_change"],
        worsened=by_status["worsened"],
        not_followed=by_status["not_followed"],
    )


def _record_id(case_id: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(case_id))
    except ValueError:
        return None


class CaseRecordStore(Protocol):
    async def save_case_record(
        self,
        tenant_id: str,
        patient_id: Optional[str],
        case_payload: Mapping[str, Any],
        result: SuggestionResult,
        engine_version: str,
    ) -> str: ...

    async def record_doctor_decision(
        self,
        tenant_id: str,
        case_id: str,
        chosen_remedy: str,
        potency: Optional[str] = None,
        repetition: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> bool: ...

    async def record_outcome(
        self,
        tenant_id: str,
        case_id: str,
        outcome_status: str,
        notes: Optional[str] = None,
    ) -> bool: ...

    async def recent_unfavorable_choices(
        self,
        tenant_id: str,
        patient_id: str,
        window_days: int,
        outcomes: Iterable[str],
    ) -> List[PriorChoice]: ...

    async def remedy_outcome_stats(
        self,
        tenant_id: str,
        remedy: str,
        aliases: Iterable[str] = (),
        since_days: Optional[int] = None,
    ) -> OutcomeStats: ...


class SqlCaseRecordStore:
    """``remedy_case_records`` on PostgreSQL, always through ``tenant_session``."""

    async def save_case_record(
        self,
        tenant_id: str,
        patient_id: Optional[str],
        case_payload: Mapping[str, Any],
        result: SuggestionResult,
        engine_version: str,
    ) -> str:
        record_id = uuid.uuid4()
        signature = result_signature(result)

        async with tenant_session(tenant_id) as db:
            await db.execute(
                text(
                    """
                    INSERT INTO remedy_case_records (
                        id, tenant_id, patient_id, case_payload, normalized_case,
                        suggestions, ranking_snapshot, result_signature,
                        engine_version, reference_version, created_at
                    )
                    VALUES (
                        :id, :tenant_id, :patient_id, CAST(:case_payload AS jsonb),
                        CAST(:normalized_case AS jsonb), CAST(:suggestions AS jsonb),
                        CAST(:ranking_snapshot AS jsonb), :result_signature,
                        :engine_version, :reference_version, now()
                    )
                    """
                ),
                {
                    "id": record_id,
                    "tenant_id": tenant_id,
                    "patient_id": patient_id,
                    "case_payload": json.dumps(dict(case_payload), default=str),
                    "normalized_case": json.dumps(case_to_dict(result.case)),
                    "suggestions": json.dumps(result.to_dict()),
                    "ranking_snapshot": json.dumps(ranking_snapshot(result)),
                    "result_signature": signature,
                    "engine_version": engine_version,
                    "reference_version": result.reference_version,
                },
            )

        _log.info("case record saved id=%s signature=%s", record_id, signature[:12])
        return str(record_id)

    async def record_doctor_decision(
        self,
        tenant_id: str,
        case_id: str,
        chosen_remedy: str,
        potency: Optional[str] = None,
        repetition: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> bool:
        record_id = _record_id(case_id)
        if record_id is None:
            return False
        async with tenant_session(tenant_id) as db:
            updated = await db.execute(
                text(
                    """
                    UPDATE remedy_case_records
                    SET chosen_remedy = :chosen_remedy,
                        chosen_potency = :potency,
                        chosen_repetition = :repetition,
                        decision_notes = :notes,
                        decided_at = now()
                    WHERE id = :case_id
                    """
                ),
                {
                    "chosen_remedy": chosen_remedy,
                    "potency": potency,
                    "repetition": repetition,
                    "notes": notes,
                    "case_id": record_id,
                },
            )
        return updated.rowcount == 1

    async def record_outcome(
        self,
        tenant_id: str,
        case_id: str,
        outcome_status: str,
        notes: Optional[str] = None,
    ) -> bool:
        validate_outcome(outcome_status)
        record_id = _record_id(case_id)
        if record_id is None:
            return False
        async with tenant_session(tenant_id) as db:
            updated = await db.execute(
                text(
                    """
                    UPDATE remedy_case_records
                    SET outcome_status = :outcome_status,
                        outcome_notes = :notes,
                        outcome_at = now()
                    WHERE id = :case_id
                      AND chosen_remedy IS NOT NULL
                    """
                ),
                {"outcome_status": outcome_status, "notes": notes, "case_id": record_id},
            )
        return updated.rowcount == 1

    async def recent_unfavorable_choices(
        self,
        tenant_id: str,
        patient_id: str,
        window_days: int,
        outcomes: Iterable[str],
    ) -> List[PriorChoice]:
        cutoff = datetime.now(timezone.utc) - timedelta(days=window_days)
        async with tenant_session(tenant_id) as db:
            rows = (
                await db.execute(
                    text(
                        """
                        SELECT chosen_remedy, decided_at, outcome_status
                        FROM remedy_case_records
                        WHERE patient_id = :patient_id
                          AND chosen_remedy IS NOT NULL
                          AND decided_at >= :cutoff
                          AND outcome_status = ANY(:outcomes)
                        ORDER BY decided_at DESC
                        """
                    ),
                    {
                        "patient_id": patient_id,
                        "cutoff": cutoff,
                        "outcomes": sorted(outcomes),
                    },
                )
            ).mappings().all()

        return [
            PriorChoice(
                remedy=r["chosen_remedy"],
                decided_at=r["decided_at"],
                outcome_status=r["outcome_status"],
            )
            for r in rows
        ]

    async def remedy_outcome_stats(
        self,
        tenant_id: str,
        remedy: str,
        aliases: Iterable[str] = (),
        since_days: Optional[int] = None,
    ) -> OutcomeStats:
        """
        Outcome counts for decisions that chose ``remedy`` (or any of
        ``aliases``, e.g. its name), compared case-insensitively.
        """
        keys = sorted({fold(k) for k in (remedy, *aliases) if fold(k)})
        sql = """
            SELECT outcome_status, COUNT(*) AS n
            FROM remedy_case_records
            WHERE lower(btrim(chosen_remedy)) = ANY(:keys)
              AND outcome_status IS NOT NULL
        """
        bind: Dict[str, Any] = {"keys": keys}
        if since_days is not None:
            sql += " AND decided_at >= :cutoff"
            bind["cutoff"] = datetime.now(timezone.utc) - timedelta(days=since_days)
        sql += " GROUP BY outcome_status"

        async with tenant_session(tenant_id) as db:
            rows = (await db.execute(text(sql), bind)).mappings().all()

        return outcome_stats(remedy, {r["outcome_status"]: r["n"] for r in rows})
