"""
Suggestion Data Models — Pipeline output and per-rule violation records.
"""

from __future__ import annotations

import uuid

from pydantic import Field, field_validator

from rulescope.models.llm_models import TokenUsage
from rulescope.models.rule_models import CamelModel, Rule

RULE_LABEL = "kody_rules"


class Suggestion(CamelModel):
    """A single review suggestion. Severity is derived from the broken rules."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    suggestion_content: str = ""
    relevant_file: str | None = None
    language: str | None = None
    existing_code: str | None = None
    improved_code: str | None = None
    one_sentence_summary: str | None = None
    relevant_lines_start: int | None = None
    relevant_lines_end: int | None = None
    label: str = RULE_LABEL
    severity: str | None = None
    broken_rule_ids: list[str] = Field(default_factory=list)

    @field_validator("relevant_lines_start", "relevant_lines_end", mode="before")
    @classmethod
    def _coerce_line(cls, value):
        # Models often return line numbers as strings
        try:
            number = int(value)
        except (TypeError, ValueError):
            return None
        return number or None

    @property
    def is_rule_based(self) -> bool:
        return self.label == RULE_LABEL


class Violation(CamelModel):
    """One violation of a pull-request rule, produced by a chunk analysis call."""

    primary_file_id: str | None = None
    related_file_ids: list[str] = Field(default_factory=list)
    reason: str | None = None
    suggestion_content: str | None = None
    one_sentence_summary: str | None = None


class ViolatedRule(CamelModel):
    """A rule together with every violation found for it so far."""

    rule: Rule
    violations: list[Violation] = Field(default_factory=list)


class AIAnalysisResult(CamelModel):
    """File-level analysis output."""

    code_suggestions: list[Suggestion] = Field(default_factory=list)
    overall_summary: str = ""
    token_usage: list[TokenUsage] = Field(default_factory=list)


class AIAnalysisResultPrLevel(CamelModel):
    """Pull-request-level analysis output."""

    code_suggestions: list[Suggestion] = Field(default_factory=list)
    token_usage: list[TokenUsage] = Field(default_factory=list)
