"""
SOA vs serverless comparison over the audit log.

Only OUTGOING notification events are compared (STOCK_UPDATE_SENT for
SOA, EVENT_PUBLISHED for serverless), over a trailing time window.
Percentiles use linear interpolation between closest ranks, the same as
PostgreSQL's PERCENTILE_CONT.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Any

import structlog

from core.types import AuditDirection, AuditEventType, AuditStatus, DeliveryPath, utcnow
from db.store import SupplyStore

logger = structlog.get_logger()

NOTIFICATION_EVENT_TYPES = {
    DeliveryPath.SOA: AuditEventType.STOCK_UPDATE_SENT,
    DeliveryPath.SERVERLESS: AuditEventType.EVENT_PUBLISHED,
}


def percentile_cont(values: list[float], fraction: float) -> float | None:
    if not values:
        return None
    ordered = sorted(values)
    position = fraction * (len(ordered) - 1)
    lower = math.floor(position)
    upper = math.ceil(position)
    if lower == upper:
        return float(ordered[lower])
    weight = position - lower
    return ordered[lower] + (ordered[upper] - ordered[lower]) * weight


def _as_aware(ts: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo.
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=utcnow().tzinfo)


async def summarize_path(
    store: SupplyStore,
    path: DeliveryPath,
    *,
    event_type: AuditEventType | None = None,
    since: datetime | None = None,
) -> dict[str, Any]:
    """Count, success rate and latency distribution for one path."""
    rows = await store.query_audit_by_path(path, event_type=event_type, since=since, limit=None)
    rows = [row for row in rows if row.direction == AuditDirection.OUTGOING.value]

    total = len(rows)
    successes = sum(1 for row in rows if row.status == AuditStatus.SUCCESS.value)
    latencies = [row.latency_ms for row in rows if row.latency_ms is not None]

    summary: dict[str, Any] = {
        "path": path.value,
        "event_type": event_type.value if event_type else None,
        "total": total,
        "successes": successes,
        "failures": total - successes,
        "success_rate": round(100.0 * successes / total, 2) if total else None,
        "avg_latency_ms": round(sum(latencies) / len(latencies), 2) if latencies else None,
        "p50_latency_ms": percentile_cont(latencies, 0.50),
        "p95_latency_ms": percentile_cont(latencies, 0.95),
        "p99_latency_ms": percentile_cont(latencies, 0.99),
        "min_latency_ms": min(latencies) if latencies else None,
        "max_latency_ms": max(latencies) if latencies else None,
        "requests_per_minute": 0.0,
    }

    if total > 1:
        stamps = [_as_aware(row.timestamp) for row in rows]
        span_seconds = (max(stamps) - min(stamps)).total_seconds()
        if span_seconds > 0:
            summary["requests_per_minute"] = round(total / span_seconds * 60, 2)
    return summary


async def compare_paths(store: SupplyStore, hours: float = 24) -> dict[str, Any]:
    """Side-by-side notification metrics and order counts for both paths."""
    since = utcnow() - timedelta(hours=hours)
    paths: dict[str, Any] = {}
    for path, event_type in NOTIFICATION_EVENT_TYPES.items():
        summary = await summarize_path(store, path, event_type=event_type, since=since)
        orders = await store.query_orders_by_path(path, limit=None, since=since)
        summary["orders"] = len(orders)
        paths[path.value] = summary

    soa = paths[DeliveryPath.SOA.value]
    serverless = paths[DeliveryPath.SERVERLESS.value]
    faster = None
    if soa["avg_latency_ms"] is not None and serverless["avg_latency_ms"] is not None:
        winner = DeliveryPath.SOA if soa["avg_latency_ms"] <= serverless["avg_latency_ms"] else DeliveryPath.SERVERLESS
        faster = winner.value

    logger.info(
        "comparison.computed",
        hours=hours,
        soa_total=soa["total"],
        serverless_total=serverless["total"],
        faster_path=faster,
    )
    return {"window_hours": hours, "paths": paths, "faster_path": faster}
