"""
FastAPI Dependencies — Shared singletons injected via Depends().
"""

from __future__ import annotations

from functools import lru_cache

from rulescope.audit.logger import AuditLogger
from rulescope.engine.file_analysis import FileAnalysisOrchestrator
from rulescope.engine.pr_analysis import PrLevelAnalysisOrchestrator
from rulescope.llm.executor import ModelCallExecutor
from rulescope.observability.tracing import Tracer


@lru_cache
def get_audit_logger() -> AuditLogger:
    """Shared audit logger singleton."""
    return AuditLogger()


@lru_cache
def get_tracer() -> Tracer:
    return Tracer(audit=get_audit_logger())


@lru_cache
def get_executor() -> ModelCallExecutor:
    """Shared model call executor. Holds no per-call state."""
    return ModelCallExecutor()


@lru_cache
def get_file_orchestrator() -> FileAnalysisOrchestrator:
    return FileAnalysisOrchestrator(executor=get_executor(), tracer=get_tracer())


@lru_cache
def get_pr_orchestrator() -> PrLevelAnalysisOrchestrator:
    return PrLevelAnalysisOrchestrator(executor=get_executor(), tracer=get_tracer())
