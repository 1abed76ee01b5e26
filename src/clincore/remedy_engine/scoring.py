# src/clincore/remedy_engine/scoring.py
"""
Stage 4: Scoring Engine.

    max_possible = sum(symptom.weight for every case symptom)
                   * confidence_weight["exact"] * max_grade_observed
    base_score   = raw_score / max_possible * 100
    match_score  = clamp(base_score + pathology_bonus, 0, 100)

``max_grade_observed`` is the strongest grade among the rubrics this case
matched, so a single exact match on the top-graded remedy of a one-symptom
case scores 100. Symptoms that matched nothing still count in the
denominator. Deterministic: no randomness, no clock.
"""
from __future__ import annotations

import logging
from typing import List, Mapping, Sequence, Tuple

from clincore.remedy_engine.models import NormalizedCase, Remedy, RemedyCandidate, ScoredRemedy
from clincore.remedy_engine.params import EngineParams
from clincore.remedy_engine.text import contains_phrase, fold

_log = logging.getLogger("clincore.remedy_engine.scoring")

SCORE_DECIMALS = 2


def max_grade_observed(pool: Mapping[str, RemedyCandidate]) -> int:
    return max((c.grade for cand in pool.values() for c in cand.provenance), default=0)


def max_possible_score(case: NormalizedCase, max_grade: int, params: EngineParams) -> float:
    return case.total_weight * params.confidence_weights["exact"] * max_grade


def matching_tags(remedy: Remedy, tags: Sequence[str]) -> Tuple[str, ...]:
    """Case tags found among the remedy's clinical indications (equal or whole-word)."""
    indications = [fold(i) for i in remedy.clinical_indications]
    hits = []
    for tag in sorted(tags, key=lambda t: (t.casefold(), t)):
        t = fold(tag)
        if t and any(t == ind or contains_phrase(ind, t) for ind in indications):
            hits.append(tag)
    return tuple(hits)


def pathology_bonus(hit_count: int, params: EngineParams) -> float:
    return min(hit_count * params.pathology_bonus, params.pathology_bonus_cap)


def clamp_score(value: float) -> float:
    return round(min(max(value, 0.0), 100.0), SCORE_DECIMALS)


def score_candidates(
    pool: Mapping[str, RemedyCandidate],
    case: NormalizedCase,
    remedies_by_id: Mapping[str, Remedy],
    params: EngineParams,
) -> List[ScoredRemedy]:
    if not pool:
        return []

    max_grade = max_grade_observed(pool)
    denom = max_possible_score(case, max_grade, params)
    tags = case.sorted_tags()

    scored: List[ScoredRemedy] = []
    missing: List[str] = []
    for remedy_id in sorted(pool):
        cand = pool[remedy_id]
        remedy = remedies_by_id.get(remedy_id)
        if remedy is None:
            missing.append(remedy_id)
            remedy = Remedy.placeholder(remedy_id)

        base = (cand.raw_score / denom * 100.0) if denom > 0 else 0.0
        hits = matching_tags(remedy, tags) if tags else ()
        bonus = pathology_bonus(len(hits), params)

        scored.append(
            ScoredRemedy(
                candidate=cand,
                remedy=remedy,
                match_score=clamp_score(base + bonus),
                base_score=round(base, SCORE_DECIMALS),
                pathology_bonus=bonus,
                matched_tags=hits,
            )
        )

    if missing:
        _log.warning(
            "remedies referenced by rubrics but absent from reference data: %s",
            ", ".join(missing),
        )
    _log.debug("scored remedies=%d max_grade=%d max_possible=%.4f", len(scored), max_grade, denom)
    return scored

