# src/clincore/remedy_engine/ranker.py
"""
Stage 6: Suggestion Ranker.

Orders annotated remedies, assigns confidence tiers, derives potency and
repetition from the case profile, writes the reasoning string and cuts the
list to top-N.

Ordering (strict, total):
    1. match_score          desc
    2. exact-match count    desc
    3. warning count        asc
    4. remedy name          asc (casefold), then remedy id
"""
from __future__ import annotations

import logging
import math
from typing import List, Mapping, Optional, Sequence, Tuple

from clincore.remedy_engine.errors import NoMatches
from clincore.remedy_engine.models import (
    CATEGORIES,
    GENERAL,
    MENTAL,
    Contribution,
    NormalizedCase,
    Remedy,
    RemedySuggestion,
    ScoredRemedy,
    SuggestionResult,
    SuggestionSummary,
    TIERS,
)
from clincore.remedy_engine.params import EngineParams

_log = logging.getLogger("clincore.remedy_engine.ranker")

REASONING_TOP_K = 3
_REASON_LINE = "{symptom} — matched via rubric {rubric} with {confidence} confidence"


def rank_key(item: ScoredRemedy) -> Tuple[float, int, int, str, str]:
    return (
        -item.match_score,
        -item.candidate.exact_match_count,
        len(item.warnings),
        item.remedy.name.casefold(),
        item.remedy_id,
    )


def confidence_tier(score: float, params: EngineParams) -> str:
    for tier, threshold in params.tier_thresholds:
        if score >= threshold:
            return tier
    return "low"


# ----------------------------
# Potency
# ----------------------------

def potency_band(case: NormalizedCase, params: EngineParams) -> str:
    if case.is_chronic:
        return params.potency_bands.get("chronic", "upper")
    if case.is_acute:
        return params.potency_bands.get("acute", "lower")
    return params.potency_bands.get("default", "middle")


def _band_slice(potencies: Sequence[str], band: str) -> Sequence[str]:
    n = len(potencies)
    size = math.ceil(n / 3)
    if band == "lower":
        return potencies[:size]
    if band == "upper":
        return potencies[n - size:]
    middle = potencies[size:n - size]
    return middle or [potencies[(n - 1) // 2]]


def characteristic_share(case: NormalizedCase) -> float:
    """Share of case weight carried by mental + general symptoms (0..1)."""
    total = case.total_weight
    if total <= 0:
        return 0.0
    by_cat = case.weight_by_category()
    return (by_cat[MENTAL] + by_cat[GENERAL]) / total


def suggest_potency(remedy: Remedy, case: NormalizedCase, params: EngineParams) -> Optional[str]:
    potencies = list(remedy.supported_potencies)
    if not potencies:
        return None
    band = _band_slice(potencies, potency_band(case, params))
    idx = min(len(band) - 1, int(characteristic_share(case) * len(band)))
    return band[idx]


# ----------------------------
# Repetition
# ----------------------------

def top_category(case: NormalizedCase) -> Optional[str]:
    by_cat = case.weight_by_category()
    best = None
    for c in CATEGORIES:
        if by_cat[c] > 0 and (best is None or by_cat[c] > by_cat[best]):
            best = c
    return best


def suggest_repetition(case: NormalizedCase, params: EngineParams) -> str:
    top = top_category(case)
    for rule in params.repetition_table:
        if rule.matches(case.is_acute, case.is_chronic, top):
            return rule.repetition
    return params.default_repetition


# ----------------------------
# Reasoning
# ----------------------------

def top_contributions(item: ScoredRemedy, k: int = REASONING_TOP_K) -> List[Contribution]:
    ordered = sorted(
        item.candidate.provenance,
        key=lambda c: (
            -c.contribution,
            -c.match.confidence_rank,
            c.match.rubric_id,
            c.match.symptom.text.casefold(),
        ),
    )
    return ordered[:k]


def clinical_reasoning(item: ScoredRemedy) -> str:
    lines = [
        _REASON_LINE.format(
            symptom=c.match.symptom.text,
            rubric=c.match.matched_text,
            confidence=c.match.confidence,
        )
        for c in top_contributions(item)
    ]
    text = "; ".join(lines)
    if item.pathology_bonus > 0:
        text += (
            f". Pathology support +{item.pathology_bonus:g} "
            f"(indicated for {', '.join(item.matched_tags)})"
        )
    return text


def _unique(values) -> Tuple[str, ...]:
    seen: List[str] = []
    for v in values:
        if v not in seen:
            seen.append(v)
    return tuple(seen)


# ----------------------------
# Public
# ----------------------------

def to_suggestion(item: ScoredRemedy, case: NormalizedCase, params: EngineParams) -> RemedySuggestion:
    provenance = sorted(item.candidate.provenance, key=lambda c: -c.contribution)
    return RemedySuggestion(
        remedy_id=item.remedy_id,
        remedy_name=item.remedy.name,
        remedy_category=item.remedy.category,
        match_score=item.match_score,
        confidence=confidence_tier(item.match_score, params),
        suggested_potency=suggest_potency(item.remedy, case, params),
        repetition=suggest_repetition(case, params),
        clinical_reasoning=clinical_reasoning(item),
        warnings=item.warnings,
        matched_rubrics=_unique(c.match.matched_text for c in provenance),
        matched_symptoms=_unique(c.match.symptom.text for c in provenance),
    )


def rank_suggestions(
    annotated: Sequence[ScoredRemedy],
    case: NormalizedCase,
    params: EngineParams,
    top_n: Optional[int] = None,
    reference_version: int = 0,
) -> SuggestionResult:
    if not annotated:
        raise NoMatches(details={"symptoms": len(case.symptoms)})

    qualified = [a for a in annotated if a.match_score >= params.min_suggestion_score]
    if not qualified:
        raise NoMatches(
            details={"symptoms": len(case.symptoms), "min_score": params.min_suggestion_score}
        )

    limit = int(top_n or params.top_n)
    ranked = sorted(qualified, key=rank_key)[:limit]
    suggestions = tuple(to_suggestion(item, case, params) for item in ranked)

    summary = SuggestionSummary(
        total_remedies=len(annotated),
        high_confidence=sum(1 for s in suggestions if s.confidence in ("high", "very_high")),
        warnings=sum(len(s.warnings) for s in suggestions),
    )
    _log.debug("ranked qualified=%d returned=%d", len(qualified), len(suggestions))
    return SuggestionResult(
        top_remedies=suggestions,
        summary=summary,
        case=case,
        reference_version=reference_version,
    )


def tier_counts(suggestions: Sequence[RemedySuggestion]) -> Mapping[str, int]:
    counts = dict.fromkeys(TIERS, 0)
    for s in suggestions:
        counts[s.confidence] += 1
    return counts
