# src/clincore/api/schemas.py
from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, conint
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ----------------------------
# Request
# ----------------------------

class SymptomIn(_CamelModel):
    symptom_text: str
    weight: Optional[float] = None
    location: Optional[str] = None
    sensation: Optional[str] = None
    # better | worse, modalities only; checked by the normalizer
    type: Optional[str] = None


class CaseIn(_CamelModel):
    mental: List[SymptomIn] = Field(default_factory=list)
    generals: List[SymptomIn] = Field(default_factory=list)
    particulars: List[SymptomIn] = Field(default_factory=list)
    modalities: List[SymptomIn] = Field(default_factory=list)
    pathology_tags: List[str] = Field(default_factory=list)


class SuggestRequest(_CamelModel):
    case: CaseIn
    patient_id: Optional[str] = None
    repertory_source: Optional[str] = None
    top_n: Optional[conint(ge=1, le=50)] = Field(None, description="Number of suggestions to return")
    include_narrative: bool = False


class DecisionRequest(_CamelModel):
    chosen_remedy: str = Field(..., min_length=1)
    potency: Optional[str] = None
    repetition: Optional[str] = None
    notes: Optional[str] = None


class OutcomeRequest(_CamelModel):
    outcome_status: Literal["improved", "no_change", "worsened", "not_followed"]
    notes: Optional[str] = None


# ----------------------------
# Response
# ----------------------------

class RemedyRef(_CamelModel):
    id: str
    name: str
    category: str


class WarningOut(_CamelModel):
    type: str
    message: str
    severity: str


class SuggestionOut(_CamelModel):
    remedy: RemedyRef
    match_score: float = Field(..., ge=0, le=100)
    confidence: Literal["low", "medium", "high", "very_high"]
    suggested_potency: Optional[str] = None
    repetition: str
    clinical_reasoning: str
    warnings: List[WarningOut] = Field(default_factory=list)
    matched_rubrics: List[str] = Field(default_factory=list)
    matched_symptoms: List[str] = Field(default_factory=list)


class SummaryOut(_CamelModel):
    total_remedies: int
    high_confidence: int
    warnings: int


class SuggestResponse(_CamelModel):
    top_remedies: List[SuggestionOut]
    summary: SummaryOut
    case_record_id: Optional[str] = None
    narrative: Optional[str] = None
    request_id: Optional[str] = None


class CaseUpdateResponse(_CamelModel):
    case_record_id: str
    status: str


class ReferenceVersionResponse(_CamelModel):
    version: int
    rubrics: int
    remedies: int


class OutcomeStatsResponse(_CamelModel):
    remedy: str
    total_cases: int
    improved: int
    no_change: int
    worsened: int
    not_followed: int
    success_rate: float = Field(..., ge=0, le=100)
