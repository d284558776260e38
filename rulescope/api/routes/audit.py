"""
Audit Routes — GET /audit/runs
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from rulescope.api.dependencies import get_audit_logger
from rulescope.audit.logger import AuditLogger

router = APIRouter(prefix="/audit")


@router.get("/runs")
async def recent_runs(
    limit: int = Query(default=50, ge=1, le=1000),
    span: str | None = Query(default=None, description="e.g. kodyRulesAnalyzeFile"),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """Most recent analysis runs with their usage totals."""
    return {"runs": audit.recent_runs(limit, span)}
