"""Utility helpers for emitting AWS EMF metrics."""
from __future__ import annotations

from datetime import datetime, timezone

import json
import logging
import time

LOGGER = logging.getLogger(__name__)

NAMESPACE = "Deployer"
DIMENSIONS = [["Resource", "Stage", "Result"]]


def now() -> datetime:
    """Return a timezone-aware timestamp used for reports."""
    return datetime.now(timezone.utc)


def put_metric(
    *,
    resource: str,
    stage: str,
    result: str,
    latency_ms: float,
) -> None:
    """Emit an Embedded Metric Format (EMF) log entry for a reconciled stage."""
    metric = {
        "_aws": {
            "Timestamp": int(time.time() * 1000),
            "CloudWatchMetrics": [
                {
                    "Namespace": NAMESPACE,
                    "Dimensions": DIMENSIONS,
                    "Metrics": [
                        {"Name": "Latency", "Unit": "Milliseconds"},
                    ],
                }
            ],
        },
        "Resource": str(resource or "unknown"),
        "Stage": stage,
        "Result": result,
        "Latency": latency_ms,
    }
    LOGGER.info("EMF %s", json.dumps({k: v for k, v in metric.items() if v is not None}))


__all__ = ["now", "put_metric"]
