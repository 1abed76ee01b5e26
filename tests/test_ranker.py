"""
tests/test_ranker.py

Stage 6: ordering, tiers, potency bands, repetition table, reasoning, top-N.
"""
from __future__ import annotations

import pytest

from clincore.remedy_engine.errors import NoMatches
from clincore.remedy_engine.models import (
    Contribution,
    MatchResult,
    Remedy,
    RemedyCandidate,
    ScoredRemedy,
    SuggestionWarning,
)
from clincore.remedy_engine.normalizer import normalize_case
from clincore.remedy_engine.ranker import (
    clinical_reasoning,
    confidence_tier,
    rank_key,
    rank_suggestions,
    suggest_potency,
    suggest_repetition,
    top_category,
)

from conftest import sym

POTENCIES = ("6C", "30C", "200C", "1M")


def _case(params, entries=None, tags=()):
    return normalize_case(entries or [sym("mental", "Irritability")], list(tags), params)


def _contribution(symptom_text, rubric, confidence, contribution, grade=3):
    match = MatchResult(
        symptom=sym("mental", symptom_text, weight=3.0),
        rubric_id=rubric.lower().replace(" ", "-"),
        confidence=confidence,
        matched_text=rubric,
    )
    return Contribution(match=match, grade=grade, contribution=contribution)


def _scored(remedy_id, score, name=None, exact=0, warnings=0, provenance=None):
    provenance = list(provenance or [])
    provenance += [_contribution(f"s{i}", f"Rubric {i}", "exact", 1.0) for i in range(exact)]
    return ScoredRemedy(
        candidate=RemedyCandidate(remedy_id=remedy_id, provenance=provenance),
        remedy=Remedy(id=remedy_id, name=name or remedy_id.title(), supported_potencies=POTENCIES),
        match_score=score,
        base_score=score,
        warnings=tuple(SuggestionWarning("repetition", "seen before") for _ in range(warnings)),
    )


# ----------------------------
# Tiers
# ----------------------------

@pytest.mark.parametrize(
    "score, tier",
    [(100, "very_high"), (85, "very_high"), (84.99, "high"), (65, "high"),
     (64.99, "medium"), (40, "medium"), (39.99, "low"), (0, "low")],
)
def test_confidence_tier_boundaries(params, score, tier):
    assert confidence_tier(score, params) == tier


# ----------------------------
# Potency
# ----------------------------

def test_chronic_case_draws_from_upper_band(params):
    remedy = Remedy(id="x", name="X", supported_potencies=POTENCIES)
    mental_case = _case(params, [sym("mental", "Grief")], ["chronic"])
    particular_case = _case(params, [sym("particular", "Warts")], ["chronic"])
    assert suggest_potency(remedy, mental_case, params) == "1M"
    assert suggest_potency(remedy, particular_case, params) == "200C"


def test_acute_only_case_draws_from_lower_band(params):
    remedy = Remedy(id="x", name="X", supported_potencies=POTENCIES)
    case = _case(params, [sym("particular", "Sprain")], ["injury"])
    assert suggest_potency(remedy, case, params) in ("6C", "30C")


def test_acute_on_chronic_uses_upper_band(params):
    remedy = Remedy(id="x", name="X", supported_potencies=POTENCIES)
    case = _case(params, tags=["acute", "chronic"])
    assert suggest_potency(remedy, case, params) in ("200C", "1M")


def test_unspecified_case_uses_middle(params):
    case = _case(params)
    four = Remedy(id="x", name="X", supported_potencies=POTENCIES)
    six = Remedy(id="y", name="Y", supported_potencies=("3X", "6C", "12C", "30C", "200C", "1M"))
    # four potencies: band size 2 leaves no middle band, fall back to the middle element
    assert suggest_potency(four, case, params) == "30C"
    assert suggest_potency(six, case, params) in ("12C", "30C")


def test_no_potencies_gives_none(params):
    assert suggest_potency(Remedy(id="x", name="X"), _case(params), params) is None


def test_single_potency_is_always_used(params):
    remedy = Remedy(id="x", name="X", supported_potencies=("30C",))
    for tags in ([], ["acute"], ["chronic"]):
        assert suggest_potency(remedy, _case(params, tags=tags), params) == "30C"


# ----------------------------
# Repetition
# ----------------------------

@pytest.mark.parametrize(
    "entries, tags, expected",
    [
        ([sym("particular", "Sprain")], ["injury"], "Every 2-3 hours until improvement"),
        ([sym("mental", "Fear")], ["fever"], "Every 4-6 hours, space out as symptoms ease"),
        ([sym("mental", "Fear")], ["acute", "chronic"], "Twice daily for 3 days, then reassess"),
        ([sym("mental", "Grief")], ["chronic"], "Single dose, reassess in 4 weeks"),
        ([sym("particular", "Warts")], ["chronic"], "Once daily"),
        ([sym("mental", "Grief")], [], "Twice daily"),
    ],
)
def test_repetition_table(params, entries, tags, expected):
    assert suggest_repetition(_case(params, entries, tags), params) == expected


def test_top_category_ties_follow_category_order(params):
    case = _case(params, [sym("particular", "Warts", weight=2), sym("general", "Chilly", weight=2)])
    assert top_category(case) == "general"


# ----------------------------
# Reasoning
# ----------------------------

def test_reasoning_lists_top_three_contributions(params):
    item = _scored(
        "ars",
        80.0,
        provenance=[
            _contribution("Thirst", "Thirst for small sips", "high", 4.8),
            _contribution("Anxiety", "Anxiety at night", "exact", 9.0),
            _contribution("Chilly", "Chilly", "exact", 6.0),
            _contribution("Burning", "Stomach pain burning", "low", 0.75),
        ],
    )
    assert clinical_reasoning(item) == (
        "Anxiety — matched via rubric Anxiety at night with exact confidence; "
        "Chilly — matched via rubric Chilly with exact confidence; "
        "Thirst — matched via rubric Thirst for small sips with high confidence"
    )


def test_reasoning_mentions_pathology_support(params):
    item = ScoredRemedy(
        candidate=RemedyCandidate(
            remedy_id="ars", provenance=[_contribution("Anxiety", "Anxiety at night", "exact", 9.0)]
        ),
        remedy=Remedy(id="ars", name="Arsenicum Album"),
        match_score=55.0,
        base_score=50.0,
        pathology_bonus=5.0,
        matched_tags=("anxiety",),
    )
    assert clinical_reasoning(item).endswith(". Pathology support +5 (indicated for anxiety)")


# ----------------------------
# Ordering + output
# ----------------------------

def test_tie_break_chain(params):
    items = [
        _scored("d", 70.0, name="Delta"),
        _scored("c", 70.0, name="Charlie", warnings=1),
        _scored("b", 70.0, name="Bravo", exact=1),
        _scored("a", 90.0, name="Zulu"),
        _scored("e", 70.0, name="alpha"),
    ]
    ordered = [i.remedy_id for i in sorted(items, key=rank_key)]
    # score, exact matches, fewer warnings, name (casefold)
    assert ordered == ["a", "b", "e", "d", "c"]


def test_rank_suggestions_truncates_and_summarizes(params):
    items = [_scored(f"r{i:02d}", float(100 - i * 7)) for i in range(12)]
    result = rank_suggestions(items, _case(params), params, top_n=5)
    scores = [s.match_score for s in result.top_remedies]

    assert len(result.top_remedies) == 5
    assert scores == sorted(scores, reverse=True)
    assert result.summary.total_remedies == 12
    # 100, 93, 86 are very_high; 79, 72 high
    assert result.summary.high_confidence == 5
    assert all(s.confidence == confidence_tier(s.match_score, params) for s in result.top_remedies)


def test_rank_suggestions_default_top_n(params):
    items = [_scored(f"r{i:02d}", 50.0) for i in range(15)]
    result = rank_suggestions(items, _case(params), params)
    assert len(result.top_remedies) == params.top_n


def test_empty_pool_raises_no_matches(params):
    with pytest.raises(NoMatches) as exc:
        rank_suggestions([], _case(params), params)
    assert exc.value.code == "NO_MATCHES"
    assert "consider adding more particulars" in exc.value.message


def test_suggestion_to_dict_shape(params):
    item = _scored("nux-v", 88.5, name="Nux Vomica", exact=1)
    [suggestion] = rank_suggestions([item], _case(params, tags=["chronic"]), params).top_remedies
    body = suggestion.to_dict()
    assert body["remedy"] == {"id": "nux-v", "name": "Nux Vomica", "category": "Unknown"}
    assert body["matchScore"] == 88.5
    assert body["confidence"] == "very_high"
    assert body["suggestedPotency"] in ("200C", "1M")
    assert body["repetition"] == "Single dose, reassess in 4 weeks"
    assert body["matchedRubrics"] == ["Rubric 0"]
    assert body["matchedSymptoms"] == ["s0"]
    assert body["warnings"] == []
