"""
API Request/Response Models — Bodies of the HTTP analysis endpoints.
"""

from __future__ import annotations

from pydantic import Field

from rulescope.models.context_models import AnalysisContext, FileChangeContext
from rulescope.models.rule_models import CamelModel
from rulescope.models.suggestion_models import Suggestion


class FileAnalysisRequest(CamelModel):
    """POST /analyze/file body."""

    context: AnalysisContext
    file: FileChangeContext
    existing_suggestions: list[Suggestion] = Field(
        default_factory=list,
        description="Generic suggestions already produced for this file",
    )


class PrAnalysisRequest(CamelModel):
    """POST /analyze/pr body. Changed files travel inside the context."""

    context: AnalysisContext
