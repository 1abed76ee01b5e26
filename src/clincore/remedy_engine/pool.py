# src/clincore/remedy_engine/pool.py
"""Stage 3: Remedy Pool Aggregator."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping

from clincore.remedy_engine.models import Contribution, MatchResult, RemedyCandidate, Rubric
from clincore.remedy_engine.params import EngineParams

_log = logging.getLogger("clincore.remedy_engine.pool")


def build_remedy_pool(
    matches: Iterable[MatchResult],
    rubrics_by_id: Mapping[str, Rubric],
    params: EngineParams,
) -> Dict[str, RemedyCandidate]:
    """
    Union of remedies referenced by the matched rubrics.

    Each (match, remedy, grade) adds ``grade * confidence_weight * symptom_weight``
    to the remedy's raw score and is kept in its provenance, so the score can be
    explained later without re-running the pipeline. Remedies with no
    contributions never appear.
    """
    pool: Dict[str, RemedyCandidate] = {}

    for match in matches:
        rubric = rubrics_by_id.get(match.rubric_id)
        if rubric is None:
            # index and id map come from the same snapshot
            _log.warning("matched rubric %s missing from snapshot", match.rubric_id)
            continue
        conf_w = params.confidence_weights[match.confidence]
        sym_w = float(match.symptom.weight or 0.0)
        for remedy_id, grade in rubric.remedy_grades.items():
            grade = int(grade)
            if grade <= 0:
                continue
            contribution = grade * conf_w * sym_w
            cand = pool.get(remedy_id)
            if cand is None:
                cand = pool[remedy_id] = RemedyCandidate(remedy_id=remedy_id)
            cand.provenance.append(Contribution(match=match, grade=grade, contribution=contribution))
            cand.raw_score += contribution

    _log.debug("remedy pool size=%d", len(pool))
    return pool
