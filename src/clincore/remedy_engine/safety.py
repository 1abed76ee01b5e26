# src/clincore/remedy_engine/safety.py
"""
Stage 5: Clinical Safety Filter.

Annotates scored remedies with warnings. Never removes a candidate and never
changes its score: the clinician makes the final call.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from clincore.remedy_engine.models import PriorChoice, Remedy, ScoredRemedy, SuggestionWarning
from clincore.remedy_engine.params import EngineParams
from clincore.remedy_engine.text import contains_phrase, fold

_log = logging.getLogger("clincore.remedy_engine.safety")


def _text_match(a: str, b: str) -> bool:
    fa, fb = fold(a), fold(b)
    if not fa or not fb:
        return False
    return fa == fb or contains_phrase(fa, fb) or contains_phrase(fb, fa)


def contradiction_warnings(remedy: Remedy, tags: Sequence[str]) -> List[SuggestionWarning]:
    if not remedy.contraindications or not tags:
        return []
    out: List[SuggestionWarning] = []
    for tag in tags:
        hits = sorted(c for c in remedy.contraindications if _text_match(tag, c))
        if hits:
            out.append(
                SuggestionWarning(
                    type="contradiction",
                    message=f"{remedy.name} is contraindicated for '{tag}' ({', '.join(hits)})",
                    severity="high",
                )
            )
    return out


def _references(entry: str, other: Remedy) -> bool:
    e = fold(entry)
    return e in (fold(other.id), fold(other.name)) or (
        other.category != "Unknown" and e == fold(other.category)
    )


def incompatibility_warnings(
    item: ScoredRemedy,
    scored: Sequence[ScoredRemedy],
    params: EngineParams,
) -> List[SuggestionWarning]:
    remedy = item.remedy
    if not remedy.incompatibilities:
        return []
    conflicting = [
        other
        for other in scored
        if other.remedy_id != remedy.id
        and other.match_score > params.incompatibility_min_score
        and any(_references(entry, other.remedy) for entry in remedy.incompatibilities)
    ]
    conflicting.sort(key=lambda o: (o.remedy.name.casefold(), o.remedy_id))
    return [
        SuggestionWarning(
            type="incompatibility",
            message=(
                f"{remedy.name} is incompatible with {other.remedy.name}; "
                f"both are suggested for this case (score {other.match_score:.2f})"
            ),
            severity="high",
        )
        for other in conflicting
    ]


def refers_to(recorded: str, remedy: Remedy) -> bool:
    """A recorded choice names ``remedy`` by id or by name, ignoring case."""
    r = fold(recorded)
    return bool(r) and r in (fold(remedy.id), fold(remedy.name))


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def repetition_severity(days_since: int, params: EngineParams) -> str:
    for max_days, severity in params.repetition_severity_bands:
        if days_since <= max_days:
            return severity
    return "low"


def repetition_warnings(
    remedy: Remedy,
    history: Iterable[PriorChoice],
    params: EngineParams,
    now: datetime,
) -> List[SuggestionWarning]:
    prior = sorted(
        (h for h in history if refers_to(h.remedy, remedy)),
        key=lambda h: _as_utc(h.decided_at),
        reverse=True,
    )
    if not prior:
        return []
    latest = prior[0]
    days_since = max(0, (_as_utc(now) - _as_utc(latest.decided_at)).days)
    return [
        SuggestionWarning(
            type="repetition",
            message=(
                f"{remedy.name} was prescribed for this patient {days_since} days ago "
                f"({latest.decided_at.date().isoformat()}) with outcome '{latest.outcome_status}'"
            ),
            severity=repetition_severity(days_since, params),
        )
    ]


def apply_safety_filter(
    scored: Sequence[ScoredRemedy],
    pathology_tags: Iterable[str],
    params: EngineParams,
    prior_choices: Iterable[PriorChoice] = (),
    now: Optional[datetime] = None,
) -> List[ScoredRemedy]:
    """
    ``prior_choices`` comes from the case-record store and is already limited
    to the recency window and unfavourable outcomes. ``now`` anchors the
    repetition severity bands (defaults to the current UTC time).
    """
    now = now or datetime.now(timezone.utc)
    tags = sorted(pathology_tags, key=lambda t: (t.casefold(), t))
    history = list(prior_choices)

    out: List[ScoredRemedy] = []
    counts: Dict[str, int] = {"contradiction": 0, "incompatibility": 0, "repetition": 0}
    for item in scored:
        warnings: List[SuggestionWarning] = []
        warnings += contradiction_warnings(item.remedy, tags)
        warnings += incompatibility_warnings(item, scored, params)
        warnings += repetition_warnings(item.remedy, history, params, now)
        for w in warnings:
            counts[w.type] += 1
        out.append(replace(item, warnings=item.warnings + tuple(warnings)))

    if any(counts.values()):
        _log.info(
            "safety warnings contradiction=%d incompatibility=%d repetition=%d",
            counts["contradiction"],
            counts["incompatibility"],
            counts["repetition"],
        )
    return out
