import asyncio
import sys
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

# ---- FIX WINDOWS + PSYCOPG ASYNC ----
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

import pytest

from clincore.remedy_engine.case_records import OutcomeStats, outcome_stats, result_signature, validate_outcome
from clincore.remedy_engine.models import PriorChoice, Remedy, Rubric, SuggestionResult, SymptomEntry
from clincore.remedy_engine.params import default_params
from clincore.remedy_engine.pipeline import RemedySuggestionEngine
from clincore.remedy_engine.reference import ReferenceDataCache, StaticReferenceSource
from clincore.remedy_engine.text import fold


def sym(category: str, text: str, **kw) -> SymptomEntry:
    return SymptomEntry(category=category, text=text, **kw)


def make_engine(rubrics, remedies, params=None) -> RemedySuggestionEngine:
    params = params or default_params()
    cache = ReferenceDataCache(StaticReferenceSource(rubrics, remedies), stop_words=params.stop_words)
    return RemedySuggestionEngine(cache, params)


# ---------------------------------------------------------------------------
# Sample repertory
# ---------------------------------------------------------------------------

RUBRICS = [
    Rubric("K-001", "Irritability", "Kent", "Mind", {"nux-v": 3, "cham": 2}),
    Rubric("K-002", "Anxiety at night", "Kent", "Mind", {"ars": 3, "acon": 2}),
    Rubric("K-003", "Fear of death", "Kent", "Mind", {"acon": 3, "ars": 2}),
    Rubric("K-004", "Chilly", "Kent", "Generalities", {"nux-v": 2, "ars": 3}),
    Rubric("K-005", "Thirst for small sips", "Kent", "Stomach", {"ars": 3}),
    Rubric("K-006", "Stomach pain burning", "Kent", "Stomach", {"ars": 3, "nux-v": 1}),
    Rubric("K-007", "Headache forehead pressing", "Kent", "Head", {"bry": 3, "nux-v": 2, "bell": 1}),
    Rubric("K-008", "Worse from cold", "Kent", "Modalities", {"ars": 2, "nux-v": 1}),
    Rubric("K-009", "Empty rubric", "Kent", "Mind", {}),
    Rubric("B-001", "irritability", "Boericke", "Mind", {"cham": 3}),
]

REMEDIES = [
    Remedy(
        id="nux-v",
        name="Nux Vomica",
        category="Polychrest",
        clinical_indications={"indigestion", "insomnia"},
        incompatibilities={"zinc"},
        supported_potencies=("6C", "30C", "200C", "1M"),
    ),
    Remedy(
        id="ars",
        name="Arsenicum Album",
        category="Polychrest",
        clinical_indications={"anxiety", "gastroenteritis", "food poisoning"},
        supported_potencies=("6C", "30C", "200C", "1M"),
    ),
    Remedy(
        id="acon",
        name="Aconitum Napellus",
        category="Acute",
        clinical_indications={"fever", "shock"},
        contraindications={"hypotension"},
        supported_potencies=("6C", "30C", "200C"),
    ),
    Remedy(id="cham", name="Chamomilla", supported_potencies=("6C", "30C")),
    Remedy(id="bry", name="Bryonia Alba", supported_potencies=("6C", "30C", "200C")),
    # "bell" intentionally missing: rubric references an unknown remedy
]


@pytest.fixture
def params():
    return default_params()


@pytest.fixture
def rubrics():
    return list(RUBRICS)


@pytest.fixture
def remedies():
    return list(REMEDIES)


@pytest.fixture
def engine(rubrics, remedies, params):
    return make_engine(rubrics, remedies, params)


# ---------------------------------------------------------------------------
# In-memory case record store (test double for SqlCaseRecordStore)
# ---------------------------------------------------------------------------

class InMemoryCaseRecordStore:
    def __init__(self) -> None:
        self.records: Dict[str, Dict[str, Any]] = {}

    async def save_case_record(
        self,
        tenant_id: str,
        patient_id: Optional[str],
        case_payload: Mapping[str, Any],
        result: SuggestionResult,
        engine_version: str,
    ) -> str:
        record_id = str(uuid.uuid4())
        self.records[record_id] = {
            "tenant_id": tenant_id,
            "patient_id": patient_id,
            "case_payload": dict(case_payload),
            "suggestions": result.to_dict(),
            "result_signature": result_signature(result),
            "engine_version": engine_version,
            "chosen_remedy": None,
            "decided_at": None,
            "outcome_status": None,
        }
        return record_id

    def _get(self, tenant_id: str, case_id: str) -> Optional[Dict[str, Any]]:
        rec = self.records.get(case_id)
        if rec is None or rec["tenant_id"] != tenant_id:
            return None
        return rec

    async def record_doctor_decision(
        self,
        tenant_id: str,
        case_id: str,
        chosen_remedy: str,
        potency: Optional[str] = None,
        repetition: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> bool:
        rec = self._get(tenant_id, case_id)
        if rec is None:
            return False
        rec.update(
            chosen_remedy=chosen_remedy,
            chosen_potency=potency,
            chosen_repetition=repetition,
            decision_notes=notes,
            decided_at=datetime.now(timezone.utc),
        )
        return True

    async def record_outcome(
        self,
        tenant_id: str,
        case_id: str,
        outcome_status: str,
        notes: Optional[str] = None,
    ) -> bool:
        validate_outcome(outcome_status)
        rec = self._get(tenant_id, case_id)
        if rec is None or rec["chosen_remedy"] is None:
            return False
        rec.update(outcome_status=outcome_status, outcome_notes=notes)
        return True

    async def recent_unfavorable_choices(
        self,
        tenant_id: str,
        patient_id: str,
        window_days: int,
        outcomes: Iterable[str],
    ) -> List[PriorChoice]:
        cutoff = datetime.now(timezone.utc) - timedelta(days=window_days)
        wanted = set(outcomes)
        rows = [
            r
            for r in self.records.values()
            if r["tenant_id"] == tenant_id
            and r["patient_id"] == patient_id
            and r["chosen_remedy"] is not None
            and r["decided_at"] >= cutoff
            and r["outcome_status"] in wanted
        ]
        rows.sort(key=lambda r: r["decided_at"], reverse=True)
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
        keys = {fold(k) for k in (remedy, *aliases)} - {""}
        cutoff = None if since_days is None else datetime.now(timezone.utc) - timedelta(days=since_days)
        counts: Dict[str, int] = {}
        for r in self.records.values():
            if r["tenant_id"] != tenant_id or r["outcome_status"] is None:
                continue
            if fold(r["chosen_remedy"]) not in keys:
                continue
            if cutoff is not None and r["decided_at"] < cutoff:
                continue
            counts[r["outcome_status"]] = counts.get(r["outcome_status"], 0) + 1
        return outcome_stats(remedy, counts)


@pytest.fixture
def case_store():
    return InMemoryCaseRecordStore()
