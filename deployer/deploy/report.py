"""Reporting utilities for deployment outcomes."""
from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from ..reconciler.metrics import now
from ..reconciler.types import CREATED, SKIPPED, UNCHANGED, UPDATED

FIELDNAMES = ["stage", "kind", "resource", "action", "identifier", "duration_ms", "ts"]


def generate_summary(outcome, timestamp: datetime | None = None) -> dict[str, Any]:
    """Produce a structured summary of every stage result."""
    deployed_at = _timestamp(timestamp)
    results: Mapping[str, Any] = getattr(outcome, "results", {})

    stages = []
    summary_counts = {"total": len(results), CREATED: 0, UPDATED: 0, UNCHANGED: 0, SKIPPED: 0}
    for stage, result in results.items():
        row = _result_to_row(stage, result, deployed_at)
        stages.append(row)
        if row["action"] in summary_counts:
            summary_counts[row["action"]] += 1

    return {
        "deployed_at": deployed_at,
        "kind": getattr(outcome, "kind", None),
        "domain_name": getattr(outcome, "domain_name", None),
        "summary": summary_counts,
        "stages": stages,
    }


def render(report_payload: Mapping[str, Any], fmt: str = "json") -> str:
    """Render the report payload as JSON or CSV."""
    if fmt == "csv":
        return _render_csv(report_payload.get("stages", []), report_payload.get("deployed_at"))
    return json.dumps(report_payload, indent=2, default=str, ensure_ascii=False)


def _result_to_row(stage: str, result, timestamp: str) -> dict[str, Any]:
    duration = getattr(result, "duration_ms", None)
    return {
        "stage": stage,
        "kind": getattr(result, "kind", ""),
        "resource": getattr(result, "resource", ""),
        "action": getattr(result, "action", ""),
        "identifier": getattr(result, "identifier", ""),
        "duration_ms": round(duration) if duration is not None else None,
        "ts": timestamp,
    }


def _render_csv(rows: Sequence[Mapping[str, Any]], timestamp: str | None) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=FIELDNAMES)
    writer.writeheader()
    for row in rows:
        payload = dict(row)
        payload.setdefault("ts", timestamp or "")
        writer.writerow(payload)
    return buffer.getvalue()


def _timestamp(value: datetime | None) -> str:
    when = value or now()
    return when.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


__all__ = ["generate_summary", "render"]
