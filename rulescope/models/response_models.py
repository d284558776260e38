"""
Model Response Schemas — Expected shapes of each pipeline stage's output.
"""

from __future__ import annotations

from pydantic import Field

from rulescope.models.rule_models import CamelModel
from rulescope.models.suggestion_models import Suggestion, Violation


class ClassifiedRule(CamelModel):
    """A candidate rule the classifier judged relevant to the diff."""

    uuid: str
    reason: str = ""


class UpdatedSuggestion(Suggestion):
    """An existing suggestion after the merge step.

    `violated_rule_ids` marks content silently corrected for a rule; those ids
    are not retained. `broken_rule_ids` marks content merged with a rule.
    """

    violated_rule_ids: list[str] = Field(default_factory=list)


class CodeSuggestionsResponse(CamelModel):
    code_suggestions: list[UpdatedSuggestion] = Field(default_factory=list)
    overall_summary: str = ""


class GuardianDecision(CamelModel):
    id: str
    should_remove: bool = False
    reason: str = ""


class GuardianResponse(CamelModel):
    decisions: list[GuardianDecision] = Field(default_factory=list)


class ExtractedRuleIds(CamelModel):
    ids: list[str] = Field(default_factory=list)


class PrRuleResult(CamelModel):
    """Per-rule violation list returned for one pull-request chunk."""

    rule_id: str
    violations: list[Violation] = Field(default_factory=list)
