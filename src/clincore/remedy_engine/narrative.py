# src/clincore/remedy_engine/narrative.py
"""Plain-text case summary rendered from an already computed suggestion result."""
from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Protocol

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from clincore.remedy_engine.models import CATEGORIES, NormalizedCase, SuggestionResult

tpl_dir = Path(__file__).parent / "templates"


class NarrativeGenerator(Protocol):
    def render(self, result: SuggestionResult) -> str: ...


def case_profile(case: NormalizedCase) -> str:
    if case.is_acute and case.is_chronic:
        return "acute on chronic"
    if case.is_chronic:
        return "chronic"
    if case.is_acute:
        return "acute"
    return "unspecified"


def _category_counts(case: NormalizedCase) -> List[str]:
    return [f"{len(case.by_category(c))} {c}" for c in CATEGORIES if case.by_category(c)]


class TemplateNarrativeGenerator:
    def __init__(self, template_name: str = "case_summary.txt.j2", template_dir: Optional[Path] = None) -> None:
        env = Environment(
            loader=FileSystemLoader(str(template_dir or tpl_dir)),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=False,
        )
        self._template = env.get_template(template_name)

    def render(self, result: SuggestionResult) -> str:
        case = result.case
        return self._template.render(
            profile=case_profile(case),
            symptom_count=len(case.symptoms),
            categories=_category_counts(case),
            tags=case.sorted_tags(),
            suggestions=result.top_remedies,
            total=result.summary.total_remedies,
            high=result.summary.high_confidence,
            warnings=result.summary.warnings,
        ).strip()
