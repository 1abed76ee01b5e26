# src/clincore/remedy_engine/matcher.py
"""
Stage 2: Rubric Matcher.

For one normalized symptom, find the rubrics whose text matches it and grade
each hit with an ordinal confidence:

    exact   canonical texts equal (case/whitespace-insensitive)
    high    whole-word substring, either direction
    medium  token Jaccard > medium_overlap
    low     token Jaccard > low_overlap   (anything below is dropped)

Particular symptoms may climb one tier when their location/sensation also
appears in the rubric text. Results are best-first; ties go to the rubric
with the larger grade total, then to the smaller rubric id.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from clincore.remedy_engine.models import (
    CONFIDENCE_RANK,
    PARTICULAR,
    MatchResult,
    NormalizedCase,
    Rubric,
    SymptomEntry,
    upgrade_confidence,
)
from clincore.remedy_engine.params import EngineParams
from clincore.remedy_engine.text import contains_phrase, fold, jaccard, tokens

_log = logging.getLogger("clincore.remedy_engine.matcher")


@dataclass(frozen=True)
class IndexedRubric:
    rubric: Rubric
    folded: str
    tokens: FrozenSet[str]


class RubricIndex:
    """Precomputed comparison forms for every eligible rubric. Immutable once built."""

    def __init__(self, rubrics: Iterable[Rubric], stop_words: Iterable[str] = ()) -> None:
        stop = frozenset(stop_words)
        entries: List[IndexedRubric] = []
        skipped = 0
        for r in rubrics:
            if not r.is_eligible:
                skipped += 1
                continue
            entries.append(IndexedRubric(rubric=r, folded=fold(r.text), tokens=tokens(r.text, stop)))
        self._entries: Tuple[IndexedRubric, ...] = tuple(entries)
        self._by_source: Dict[str, Tuple[IndexedRubric, ...]] = {}
        for e in self._entries:
            key = e.rubric.repertory_source.casefold()
            self._by_source[key] = self._by_source.get(key, ()) + (e,)
        self.stop_words = stop
        if skipped:
            _log.debug("rubric index skipped %d rubrics without remedy grades", skipped)

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self, repertory_source: Optional[str] = None) -> Tuple[IndexedRubric, ...]:
        if repertory_source is None:
            return self._entries
        return self._by_source.get(repertory_source.casefold(), ())

    @property
    def sources(self) -> List[str]:
        return sorted({e.rubric.repertory_source for e in self._entries})


def _base_confidence(
    symptom_folded: str,
    symptom_tokens: FrozenSet[str],
    entry: IndexedRubric,
    params: EngineParams,
) -> Optional[str]:
    if symptom_folded == entry.folded:
        return "exact"
    if contains_phrase(entry.folded, symptom_folded) or contains_phrase(symptom_folded, entry.folded):
        return "high"
    overlap = jaccard(symptom_tokens, entry.tokens)
    if overlap > params.medium_overlap:
        return "medium"
    if overlap > params.low_overlap:
        return "low"
    return None


def _qualifier_hits(symptom: SymptomEntry, entry: IndexedRubric, stop_words: FrozenSet[str]) -> bool:
    for value in (symptom.location, symptom.sensation):
        if not value:
            continue
        folded = fold(value)
        if contains_phrase(entry.folded, folded):
            return True
        value_tokens = tokens(value, stop_words)
        if value_tokens and value_tokens <= entry.tokens:
            return True
    return False


def _sort_key(match: MatchResult, grade_totals: Dict[str, int]) -> Tuple[int, int, str]:
    return (-CONFIDENCE_RANK[match.confidence], -grade_totals[match.rubric_id], match.rubric_id)


def match_symptom(
    symptom: SymptomEntry,
    index: RubricIndex,
    params: EngineParams,
    repertory_source: Optional[str] = None,
) -> List[MatchResult]:
    symptom_folded = fold(symptom.text)
    symptom_tokens = tokens(symptom.text, index.stop_words)
    if not symptom_folded:
        return []

    upgradable = symptom.category == PARTICULAR and bool(symptom.location or symptom.sensation)

    found: List[MatchResult] = []
    grade_totals: Dict[str, int] = {}
    for entry in index.entries(repertory_source):
        confidence = _base_confidence(symptom_folded, symptom_tokens, entry, params)
        if confidence is None:
            continue
        if upgradable and _qualifier_hits(symptom, entry, index.stop_words):
            confidence = upgrade_confidence(confidence)
        found.append(
            MatchResult(
                symptom=symptom,
                rubric_id=entry.rubric.id,
                confidence=confidence,
                matched_text=entry.rubric.text,
            )
        )
        grade_totals[entry.rubric.id] = entry.rubric.grade_total

    found.sort(key=lambda m: _sort_key(m, grade_totals))
    return found


def match_case(
    case: NormalizedCase,
    index: RubricIndex,
    params: EngineParams,
    repertory_source: Optional[str] = None,
) -> List[MatchResult]:
    """All matches for every symptom, in case order; per-symptom lists stay best-first."""
    matches: List[MatchResult] = []
    unmatched = 0
    for symptom in case.symptoms:
        hits = match_symptom(symptom, index, params, repertory_source)
        if not hits:
            unmatched += 1
        matches.extend(hits)
    _log.debug(
        "matched symptoms=%d matches=%d unmatched=%d source=%s",
        len(case.symptoms),
        len(matches),
        unmatched,
        repertory_source or "*",
    )
    return matches

