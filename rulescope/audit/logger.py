"""
Audit Logger — JSON-lines trail of analysis runs.

One record per finished span: span name, run id, duration, model usage
totals and the span's attributes (organization, pull request, file,
status, suggestion count). Served back by GET /audit/runs.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

from rulescope.config import settings

logger = logging.getLogger("rulescope.audit")


class AuditLogger:
    def __init__(self, log_path: str | None = None) -> None:
        self.log_path = Path(log_path or settings.audit_log_path)

    def record_run(
        self,
        span: str,
        run_id: str | None,
        duration_ms: int | None,
        usage: dict[str, int],
        attrs: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Append one run record. Write errors are logged, never raised."""
        record = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "span": span,
            "run_id": run_id,
            "duration_ms": duration_ms,
            "usage": usage,
            **(attrs or {}),
        }

        try:
            with open(self.log_path, "a") as f:
                f.write(json.dumps(record, default=str) + "\n")
        except OSError as e:
            logger.error(f"Failed to write audit record for {span} run {run_id}: {e}")
        return record

    def recent_runs(self, limit: int = 50, span: str | None = None) -> list[dict[str, Any]]:
        """Newest-last run records, optionally restricted to one span name."""
        if limit <= 0 or not self.log_path.exists():
            return []

        runs: list[dict[str, Any]] = []
        try:
            with open(self.log_path) as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning(f"Skipping corrupt audit line in {self.log_path}")
                        continue
                    if span is None or record.get("span") == span:
                        runs.append(record)
        except OSError as e:
            logger.error(f"Failed to read audit log {self.log_path}: {e}")
            return []

        return runs[-limit:]
