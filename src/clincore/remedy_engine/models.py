# src/clincore/remedy_engine/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple


# ----------------------------
# Enumerations (plain strings, ordered where it matters)
# ----------------------------

MENTAL = "mental"
GENERAL = "general"
PARTICULAR = "particular"
MODALITY = "modality"

CATEGORIES = (MENTAL, GENERAL, PARTICULAR, MODALITY)

MODALITY_TYPES = ("better", "worse")

# ordinal, best first
CONFIDENCES = ("exact", "high", "medium", "low")
CONFIDENCE_RANK = {"exact": 3, "high": 2, "medium": 1, "low": 0}

TIERS = ("very_high", "high", "medium", "low")

WARNING_TYPES = ("contradiction", "incompatibility", "repetition")
SEVERITIES = ("low", "medium", "high")


def upgrade_confidence(confidence: str, steps: int = 1) -> str:
    rank = min(CONFIDENCE_RANK[confidence] + steps, CONFIDENCE_RANK["exact"])
    return CONFIDENCES[len(CONFIDENCES) - 1 - rank]


# ----------------------------
# Case input
# ----------------------------

@dataclass(frozen=True)
class SymptomEntry:
    category: str
    text: str
    location: Optional[str] = None
    sensation: Optional[str] = None  # particular only
    modality_type: Optional[str] = None  # better | worse, modality only
    weight: Optional[float] = None

    @property
    def key(self) -> Tuple[str, str, str, str, str]:
        return (
            self.category,
            self.text.casefold(),
            (self.location or "").casefold(),
            (self.sensation or "").casefold(),
            self.modality_type or "",
        )

    def label(self) -> str:
        parts = [self.text]
        if self.location:
            parts.append(f"location: {self.location}")
        if self.sensation:
            parts.append(f"sensation: {self.sensation}")
        if self.modality_type:
            parts.append(self.modality_type)
        return parts[0] if len(parts) == 1 else f"{parts[0]} ({', '.join(parts[1:])})"


@dataclass(frozen=True)
class NormalizedCase:
    mental: Tuple[SymptomEntry, ...] = ()
    general: Tuple[SymptomEntry, ...] = ()
    particular: Tuple[SymptomEntry, ...] = ()
    modality: Tuple[SymptomEntry, ...] = ()
    pathology_tags: FrozenSet[str] = frozenset()
    is_acute: bool = False
    is_chronic: bool = False

    @property
    def symptoms(self) -> Tuple[SymptomEntry, ...]:
        return self.mental + self.general + self.particular + self.modality

    @property
    def total_weight(self) -> float:
        return float(sum(s.weight or 0.0 for s in self.symptoms))

    def by_category(self, category: str) -> Tuple[SymptomEntry, ...]:
        return getattr(self, category)

    def weight_by_category(self) -> Dict[str, float]:
        return {c: float(sum(s.weight or 0.0 for s in self.by_category(c))) for c in CATEGORIES}

    def sorted_tags(self) -> List[str]:
        return sorted(self.pathology_tags, key=lambda t: (t.casefold(), t))


# ----------------------------
# Reference data (read-only for the engine)
# ----------------------------

@dataclass(frozen=True)
class Rubric:
    id: str
    text: str
    repertory_source: str
    chapter: str
    remedy_grades: Mapping[str, int] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        # freeze the mapping so snapshots can be shared across requests
        object.__setattr__(self, "remedy_grades", MappingProxyType(dict(self.remedy_grades)))

    @property
    def grade_total(self) -> int:
        return int(sum(self.remedy_grades.values()))

    @property
    def is_eligible(self) -> bool:
        return bool(self.remedy_grades)


@dataclass(frozen=True)
class Remedy:
    id: str
    name: str
    category: str = "Unknown"
    clinical_indications: FrozenSet[str] = frozenset()
    incompatibilities: FrozenSet[str] = frozenset()
    contraindications: FrozenSet[str] = frozenset()
    supported_potencies: Tuple[str, ...] = ()  # low -> high
    repetition_by_severity: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "clinical_indications", frozenset(self.clinical_indications))
        object.__setattr__(self, "incompatibilities", frozenset(self.incompatibilities))
        object.__setattr__(self, "contraindications", frozenset(self.contraindications))
        object.__setattr__(self, "supported_potencies", tuple(self.supported_potencies))
        object.__setattr__(
            self, "repetition_by_severity", MappingProxyType(dict(self.repetition_by_severity))
        )

    @classmethod
    def placeholder(cls, remedy_id: str) -> "Remedy":
        return cls(id=remedy_id, name=remedy_id)


# ----------------------------
# Pipeline intermediates
# ----------------------------

@dataclass(frozen=True)
class MatchResult:
    symptom: SymptomEntry
    rubric_id: str
    confidence: str
    matched_text: str

    @property
    def confidence_rank(self) -> int:
        return CONFIDENCE_RANK[self.confidence]


@dataclass(frozen=True)
class Contribution:
    match: MatchResult
    grade: int
    contribution: float


@dataclass
class RemedyCandidate:
    remedy_id: str
    provenance: List[Contribution] = field(default_factory=list)
    raw_score: float = 0.0

    @property
    def exact_match_count(self) -> int:
        return sum(1 for c in self.provenance if c.match.confidence == "exact")


@dataclass(frozen=True)
class SuggestionWarning:
    type: str
    message: str
    severity: str = "medium"


@dataclass(frozen=True)
class ScoredRemedy:
    candidate: RemedyCandidate
    remedy: Remedy
    match_score: float
    base_score: float
    pathology_bonus: float = 0.0
    matched_tags: Tuple[str, ...] = ()
    warnings: Tuple[SuggestionWarning, ...] = ()

    @property
    def remedy_id(self) -> str:
        return self.remedy.id


@dataclass(frozen=True)
class PriorChoice:
    """A previous doctor decision for the same patient, as returned by the case store.

    ``remedy`` is the choice as recorded: a remedy id or its name.
    """

    remedy: str
    decided_at: datetime
    outcome_status: str


# ----------------------------
# Output
# ----------------------------

@dataclass(frozen=True)
class RemedySuggestion:
    remedy_id: str
    remedy_name: str
    remedy_category: str
    match_score: float
    confidence: str
    suggested_potency: Optional[str]
    repetition: str
    clinical_reasoning: str
    warnings: Tuple[SuggestionWarning, ...] = ()
    matched_rubrics: Tuple[str, ...] = ()
    matched_symptoms: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {
            "remedy": {
                "id": self.remedy_id,
                "name": self.remedy_name,
                "category": self.remedy_category,
            },
            "matchScore": self.match_score,
            "confidence": self.confidence,
            "suggestedPotency": self.suggested_potency,
            "repetition": self.repetition,
            "clinicalReasoning": self.clinical_reasoning,
            "warnings": [
                {"type": w.type, "message": w.message, "severity": w.severity}
                for w in self.warnings
            ],
            "matchedRubrics": list(self.matched_rubrics),
            "matchedSymptoms": list(self.matched_symptoms),
        }


@dataclass(frozen=True)
class SuggestionSummary:
    total_remedies: int
    high_confidence: int
    warnings: int


@dataclass(frozen=True)
class SuggestionResult:
    top_remedies: Tuple[RemedySuggestion, ...]
    summary: SuggestionSummary
    case: NormalizedCase
    reference_version: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "topRemedies": [s.to_dict() for s in self.top_remedies],
            "summary": {
                "totalRemedies": self.summary.total_remedies,
                "highConfidence": self.summary.high_confidence,
                "warnings": self.summary.warnings,
            },
        }
