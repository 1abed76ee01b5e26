# src/clincore/remedy_engine/params.py
"""
Clinical tuning parameters for the remedy suggestion engine.

All weights, thresholds, potency bands and the repetition decision table are
loaded from a versioned JSON document so they can be tuned without touching
the scoring code. ``load_params`` fills any key the document omits with the
shipped defaults below.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional, Pattern, Tuple

from clincore.remedy_engine.models import CATEGORIES, CONFIDENCES, SEVERITIES, TIERS

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "remedy_engine_config_v1.json"

_BANDS = {"lower", "middle", "upper"}


@dataclass(frozen=True)
class RepetitionRule:
    acute: Optional[bool]  # None = wildcard
    chronic: Optional[bool]
    top_category: Optional[str]
    repetition: str

    def matches(self, is_acute: bool, is_chronic: bool, top_category: Optional[str]) -> bool:
        if self.acute is not None and self.acute != is_acute:
            return False
        if self.chronic is not None and self.chronic != is_chronic:
            return False
        if self.top_category is not None and self.top_category != top_category:
            return False
        return True


@dataclass(frozen=True)
class EngineParams:
    version: str

    # normalizer
    category_weights: Dict[str, float]
    weight_min: float
    weight_max: float
    acute_tags: FrozenSet[str]
    chronic_tags: FrozenSet[str]
    acute_patterns: Tuple[Pattern[str], ...]
    chronic_patterns: Tuple[Pattern[str], ...]

    # matcher
    medium_overlap: float
    low_overlap: float
    stop_words: FrozenSet[str]

    # pool + scoring
    confidence_weights: Dict[str, float]
    pathology_bonus: float
    pathology_bonus_cap: float

    # safety
    incompatibility_min_score: float
    repetition_window_days: int
    unfavorable_outcomes: FrozenSet[str]
    repetition_severity_bands: Tuple[Tuple[int, str], ...]  # (max days since decision, severity), ascending

    # ranker
    tier_thresholds: Tuple[Tuple[str, float], ...]  # descending
    potency_bands: Dict[str, str]
    repetition_table: Tuple[RepetitionRule, ...]
    default_repetition: str
    top_n: int
    min_suggestion_score: float


def _read_config(path: Path) -> Dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8-sig"))


def _compile_all(patterns: Any) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(str(p), re.IGNORECASE) for p in patterns or ())


def params_from_dict(cfg: Dict[str, Any], defaults: Optional[Dict[str, Any]] = None) -> EngineParams:
    """Build params from a config mapping; missing keys fall back to ``defaults``."""
    base = dict(defaults or {})
    base.update(cfg)
    cfg = base

    category_weights = {str(k): float(v) for k, v in cfg["category_weights"].items()}
    missing = [c for c in CATEGORIES if c not in category_weights]
    if missing:
        raise ValueError(f"category_weights missing categories: {missing}")
    if any(w <= 0 for w in category_weights.values()):
        raise ValueError("category_weights must be positive")

    confidence_weights = {str(k): float(v) for k, v in cfg["confidence_weights"].items()}
    if sorted(confidence_weights) != sorted(CONFIDENCES):
        raise ValueError(f"confidence_weights must define exactly: {list(CONFIDENCES)}")
    ordered = [confidence_weights[c] for c in CONFIDENCES]
    if any(a < b for a, b in zip(ordered, ordered[1:])):
        raise ValueError("confidence_weights must be monotone (exact >= high >= medium >= low)")

    weight_min = float(cfg["weight_min"])
    weight_max = float(cfg["weight_max"])
    if not 0 < weight_min <= weight_max:
        raise ValueError("weight range must satisfy 0 < weight_min <= weight_max")

    low_overlap = float(cfg["low_overlap"])
    medium_overlap = float(cfg["medium_overlap"])
    if not 0 <= low_overlap <= medium_overlap <= 1:
        raise ValueError("overlap thresholds must satisfy 0 <= low <= medium <= 1")

    tiers = sorted(
        ((str(k), float(v)) for k, v in cfg["tier_thresholds"].items()),
        key=lambda kv: kv[1],
        reverse=True,
    )
    unknown_tiers = sorted(k for k, _ in tiers if k not in TIERS)
    if unknown_tiers:
        raise ValueError(f"tier_thresholds has unknown tiers: {unknown_tiers}")

    top_n = int(cfg["top_n"])
    if top_n < 1:
        raise ValueError("top_n must be at least 1")

    severity_bands = tuple(
        sorted((int(row["max_days"]), str(row["severity"])) for row in cfg.get("repetition_severity_bands", []))
    )
    if any(days < 0 or sev not in SEVERITIES for days, sev in severity_bands):
        raise ValueError(f"repetition_severity_bands need max_days >= 0 and severity in {list(SEVERITIES)}")

    bands = {str(k): str(v) for k, v in cfg["potency_bands"].items()}
    bad = {v for v in bands.values() if v not in _BANDS}
    if bad:
        raise ValueError(f"unknown potency bands: {sorted(bad)}")

    table = tuple(
        RepetitionRule(
            acute=row.get("acute"),
            chronic=row.get("chronic"),
            top_category=row.get("top_category"),
            repetition=str(row["repetition"]),
        )
        for row in cfg.get("repetition_table", [])
    )

    return EngineParams(
        version=str(cfg.get("version", "unversioned")),
        category_weights=category_weights,
        weight_min=weight_min,
        weight_max=weight_max,
        acute_tags=frozenset(str(t).casefold() for t in cfg.get("acute_tags", ["acute"])),
        chronic_tags=frozenset(str(t).casefold() for t in cfg.get("chronic_tags", ["chronic"])),
        acute_patterns=_compile_all(cfg.get("acute_patterns")),
        chronic_patterns=_compile_all(cfg.get("chronic_patterns")),
        medium_overlap=medium_overlap,
        low_overlap=low_overlap,
        stop_words=frozenset(str(w).casefold() for w in cfg.get("stop_words", [])),
        confidence_weights=confidence_weights,
        pathology_bonus=float(cfg["pathology_bonus"]),
        pathology_bonus_cap=float(cfg["pathology_bonus_cap"]),
        incompatibility_min_score=float(cfg["incompatibility_min_score"]),
        repetition_window_days=int(cfg["repetition_window_days"]),
        unfavorable_outcomes=frozenset(str(o) for o in cfg["unfavorable_outcomes"]),
        repetition_severity_bands=severity_bands,
        tier_thresholds=tuple(tiers),
        potency_bands=bands,
        repetition_table=table,
        default_repetition=str(cfg["default_repetition"]),
        top_n=top_n,
        min_suggestion_score=float(cfg.get("min_suggestion_score", 0.0)),
    )


def load_params(config_path: Optional[str] = None) -> EngineParams:
    defaults = _read_config(DEFAULT_CONFIG_PATH)
    if not config_path:
        return params_from_dict(defaults)
    return params_from_dict(_read_config(Path(config_path)), defaults=defaults)


def default_params() -> EngineParams:
    return load_params(None)
