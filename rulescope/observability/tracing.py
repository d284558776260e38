"""
Tracing — Spans bracketing each top-level analysis invocation.

Ending a span logs the usage totals of the run and appends an audit record.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from rulescope.audit.logger import AuditLogger
from rulescope.models.llm_models import UsageTracker

logger = logging.getLogger("rulescope.observability")


@dataclass
class Span:
    name: str
    span_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    attrs: dict[str, Any] = field(default_factory=dict)
    started_at: float = field(default_factory=time.perf_counter)
    duration_ms: int | None = None


class Tracer:
    def __init__(self, audit: AuditLogger | None = None) -> None:
        self.audit = audit

    def start_span(self, name: str, attrs: dict[str, Any] | None = None) -> Span:
        span = Span(name=name, attrs=dict(attrs or {}))
        logger.info(f"[{span.name}] started {span.attrs}")
        return span

    def end_span(
        self,
        span: Span,
        usage: UsageTracker | None = None,
        attrs: dict[str, Any] | None = None,
    ) -> Span:
        span.duration_ms = int((time.perf_counter() - span.started_at) * 1000)
        span.attrs.update(attrs or {})
        totals = usage.totals() if usage else {}

        logger.info(f"[{span.name}] finished in {span.duration_ms}ms usage={totals}")

        if self.audit is not None:
            self.audit.record_run(
                span.name,
                usage.parent_run_id if usage else None,
                span.duration_ms,
                totals,
                {"span_id": span.span_id, **span.attrs},
            )
        return span
