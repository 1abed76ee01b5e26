# src/clincore/remedy_engine/normalizer.py
"""
Stage 1: Case Normalizer.

Turns raw symptom entries + pathology tags into a ``NormalizedCase``:
canonical text, category invariants enforced, default/clamped weights,
duplicates merged (max weight wins) and acute/chronic flags derived.
Pure function of its inputs.
"""
from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from clincore.remedy_engine.errors import EmptyCase, InvalidSymptom, InvalidWeight
from clincore.remedy_engine.models import (
    CATEGORIES,
    MODALITY,
    MODALITY_TYPES,
    PARTICULAR,
    NormalizedCase,
    SymptomEntry,
)
from clincore.remedy_engine.params import EngineParams
from clincore.remedy_engine.text import clean

_log = logging.getLogger("clincore.remedy_engine.normalizer")

# inbound payload key -> category
PAYLOAD_SECTIONS = {
    "mental": "mental",
    "generals": "general",
    "particulars": "particular",
    "modalities": "modality",
}


def _resolve_weight(entry: SymptomEntry, params: EngineParams) -> float:
    if entry.weight is None:
        return float(params.category_weights[entry.category])
    try:
        w = float(entry.weight)
    except (TypeError, ValueError):
        raise InvalidWeight(
            f"weight for '{entry.text}' is not a number",
            {"symptom": entry.text, "weight": str(entry.weight)},
        )
    if not math.isfinite(w) or w <= 0:
        raise InvalidWeight(
            f"weight for '{entry.text}' must be a finite value > 0",
            {"symptom": entry.text, "weight": str(entry.weight)},
        )
    return min(max(w, params.weight_min), params.weight_max)


def _canonical_entry(entry: SymptomEntry, params: EngineParams) -> Optional[SymptomEntry]:
    if entry.category not in CATEGORIES:
        raise InvalidSymptom(
            f"unknown symptom category: {entry.category!r}",
            {"category": str(entry.category)},
        )

    text = clean(entry.text)
    if not text:
        return None

    location = clean(entry.location) or None if entry.category == PARTICULAR else None
    sensation = clean(entry.sensation) or None if entry.category == PARTICULAR else None

    modality_type = None
    if entry.category == MODALITY:
        modality_type = (entry.modality_type or "").strip().lower() or None
        if modality_type not in MODALITY_TYPES:
            raise InvalidSymptom(
                f"modality '{text}' needs a type of 'better' or 'worse'",
                {"symptom": text, "type": str(entry.modality_type)},
            )

    return SymptomEntry(
        category=entry.category,
        text=text,
        location=location,
        sensation=sensation,
        modality_type=modality_type,
        weight=_resolve_weight(entry, params),
    )


def _matches_any(tag: str, exact: Iterable[str], patterns: Iterable[Any]) -> bool:
    folded = tag.casefold()
    if folded in exact:
        return True
    return any(p.search(tag) for p in patterns)


def derive_case_flags(tags: Iterable[str], params: EngineParams) -> tuple[bool, bool]:
    tags = list(tags)
    is_acute = any(_matches_any(t, params.acute_tags, params.acute_patterns) for t in tags)
    is_chronic = any(_matches_any(t, params.chronic_tags, params.chronic_patterns) for t in tags)
    return is_acute, is_chronic


def normalize_case(
    entries: Sequence[SymptomEntry],
    pathology_tags: Sequence[str],
    params: EngineParams,
) -> NormalizedCase:
    merged: Dict[tuple, SymptomEntry] = {}

    for raw in entries:
        entry = _canonical_entry(raw, params)
        if entry is None:
            continue
        prev = merged.get(entry.key)
        if prev is None:
            merged[entry.key] = entry
        elif (entry.weight or 0.0) > (prev.weight or 0.0):
            # keep first-seen text/position, take the stronger weight
            merged[entry.key] = replace(prev, weight=entry.weight)

    if not merged:
        raise EmptyCase("case must contain at least one symptom")

    per_category: Dict[str, List[SymptomEntry]] = {c: [] for c in CATEGORIES}
    for entry in merged.values():
        per_category[entry.category].append(entry)

    tags = frozenset(t for t in (clean(x) for x in pathology_tags or ()) if t)
    is_acute, is_chronic = derive_case_flags(tags, params)

    case = NormalizedCase(
        mental=tuple(per_category["mental"]),
        general=tuple(per_category["general"]),
        particular=tuple(per_category["particular"]),
        modality=tuple(per_category["modality"]),
        pathology_tags=tags,
        is_acute=is_acute,
        is_chronic=is_chronic,
    )

    dropped = len(entries) - len(merged)
    _log.debug(
        "normalized case symptoms=%d merged_or_blank=%d acute=%s chronic=%s",
        len(case.symptoms),
        dropped,
        is_acute,
        is_chronic,
    )
    return case


def entries_from_payload(case: Mapping[str, Any]) -> List[SymptomEntry]:
    """
    Convert the inbound ``case`` shape into symptom entries:

        {"mental": [{"symptomText", "weight"?}],
         "generals": [...],
         "particulars": [{"symptomText", "location"?, "sensation"?, "weight"?}],
         "modalities": [{"symptomText", "type": "better"|"worse", "weight"?}],
         "pathologyTags": [...]}
    """
    out: List[SymptomEntry] = []
    for section, category in PAYLOAD_SECTIONS.items():
        for item in case.get(section) or []:
            out.append(
                SymptomEntry(
                    category=category,
                    text=str(item.get("symptomText") or item.get("text") or ""),
                    location=item.get("location"),
                    sensation=item.get("sensation"),
                    modality_type=item.get("type") if category == MODALITY else None,
                    weight=item.get("weight"),
                )
            )
    return out
