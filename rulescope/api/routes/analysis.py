"""
Analysis Routes — POST /analyze/file, POST /analyze/pr

Provider failures (primary and fallback both down) map to 502; the
orchestrators have already logged them.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from rulescope.api.dependencies import get_file_orchestrator, get_pr_orchestrator
from rulescope.engine.file_analysis import FileAnalysisOrchestrator
from rulescope.engine.pr_analysis import PrLevelAnalysisOrchestrator
from rulescope.errors import ProviderFailure
from rulescope.models.api_models import FileAnalysisRequest, PrAnalysisRequest
from rulescope.models.suggestion_models import AIAnalysisResult, AIAnalysisResultPrLevel

logger = logging.getLogger("rulescope.api.analysis")

router = APIRouter(prefix="/analyze")


@router.post("/file", response_model=AIAnalysisResult, response_model_by_alias=True)
async def analyze_file(
    request: FileAnalysisRequest,
    orchestrator: FileAnalysisOrchestrator = Depends(get_file_orchestrator),
):
    """Rule-based suggestions for one changed file."""
    try:
        return await orchestrator.analyze(
            request.context, request.file, request.existing_suggestions
        )
    except ProviderFailure as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/pr", response_model=AIAnalysisResultPrLevel, response_model_by_alias=True)
async def analyze_pr(
    request: PrAnalysisRequest,
    orchestrator: PrLevelAnalysisOrchestrator = Depends(get_pr_orchestrator),
):
    """Pull-request-level rule suggestions across all changed files."""
    if not request.context.changed_files:
        logger.info(f"PR#{request.context.pull_request.number} has no changed files")
        return AIAnalysisResultPrLevel()

    try:
        return await orchestrator.analyze(request.context)
    except ProviderFailure as e:
        raise HTTPException(status_code=502, detail=str(e))
