# src/clincore/remedy_engine/pipeline.py
"""
Remedy suggestion pipeline.

    normalize -> match -> pool -> score -> safety -> rank

One reference snapshot is taken at the start of a call and used for every
stage, so a concurrent reload never mixes two repertory versions inside a
single suggestion. The engine keeps no per-request state.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Iterable, Mapping, Optional, Sequence

from clincore.remedy_engine.matcher import match_case
from clincore.remedy_engine.models import PriorChoice, SuggestionResult, SymptomEntry
from clincore.remedy_engine.normalizer import entries_from_payload, normalize_case
from clincore.remedy_engine.params import EngineParams, default_params
from clincore.remedy_engine.pool import build_remedy_pool
from clincore.remedy_engine.ranker import rank_suggestions, tier_counts
from clincore.remedy_engine.reference import ReferenceDataCache
from clincore.remedy_engine.safety import apply_safety_filter
from clincore.remedy_engine.scoring import score_candidates

_log = logging.getLogger("clincore.remedy_engine")


class RemedySuggestionEngine:
    def __init__(self, cache: ReferenceDataCache, params: Optional[EngineParams] = None) -> None:
        self.cache = cache
        self.params = params or default_params()

    def suggest(
        self,
        entries: Sequence[SymptomEntry],
        pathology_tags: Sequence[str] = (),
        *,
        prior_choices: Iterable[PriorChoice] = (),
        repertory_source: Optional[str] = None,
        top_n: Optional[int] = None,
    ) -> SuggestionResult:
        params = self.params
        start = time.perf_counter()

        case = normalize_case(entries, pathology_tags, params)
        snapshot = self.cache.get()

        matches = match_case(case, snapshot.index, params, repertory_source)
        pool = build_remedy_pool(matches, snapshot.rubrics_by_id, params)
        scored = score_candidates(pool, case, snapshot.remedies_by_id, params)
        annotated = apply_safety_filter(scored, case.pathology_tags, params, prior_choices)
        result = rank_suggestions(
            annotated,
            case,
            params,
            top_n=top_n,
            reference_version=snapshot.version,
        )

        tiers = tier_counts(result.top_remedies)
        _log.info(
            "suggest symptoms=%d matches=%d pool=%d returned=%d very_high=%d high=%d "
            "warnings=%d ref_v=%d %.2fms",
            len(case.symptoms),
            len(matches),
            len(pool),
            len(result.top_remedies),
            tiers["very_high"],
            tiers["high"],
            result.summary.warnings,
            snapshot.version,
            (time.perf_counter() - start) * 1000.0,
        )
        return result

    def suggest_payload(
        self,
        case: Mapping[str, Any],
        *,
        prior_choices: Iterable[PriorChoice] = (),
        repertory_source: Optional[str] = None,
        top_n: Optional[int] = None,
    ) -> SuggestionResult:
        """Same as ``suggest`` for the inbound JSON case shape (``pathologyTags`` included)."""
        return self.suggest(
            entries_from_payload(case),
            list(case.get("pathologyTags") or []),
            prior_choices=prior_choices,
            repertory_source=repertory_source,
            top_n=top_n,
        )
