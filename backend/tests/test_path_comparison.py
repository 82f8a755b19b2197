"""
Tests for the SOA vs serverless comparison queries.
"""

from datetime import timedelta

import pytest

from audit.comparison import compare_paths, percentile_cont, summarize_path
from core.types import (
    AuditDirection,
    AuditEvent,
    AuditEventType,
    AuditStatus,
    DeliveryPath,
    OrderPriority,
    OrderRecord,
    OrderStatus,
    utcnow,
)


async def _audit(store, path, event_type, status, latency_ms, *, minutes_ago=0, direction=AuditDirection.OUTGOING):
    event = AuditEvent(
        event_type=event_type,
        direction=direction,
        status=status,
        latency_ms=latency_ms,
        timestamp=utcnow() - timedelta(minutes=minutes_ago),
    )
    await store.append_audit_event(event, path)


def test_percentile_cont_interpolates():
    assert percentile_cont([], 0.5) is None
    assert percentile_cont([7], 0.95) == 7.0
    assert percentile_cont([10, 20, 30, 40], 0.5) == 25.0
    assert percentile_cont([40, 10, 30, 20], 0.0) == 10.0
    assert percentile_cont([1, 2, 3, 4, 5, 6, 7, 8, 9, 10], 0.95) == pytest.approx(9.55)


@pytest.mark.asyncio
async def test_summary_counts_only_outgoing_rows(store):
    sent = AuditEventType.STOCK_UPDATE_SENT
    await _audit(store, "SOA", sent, AuditStatus.SUCCESS, 100, minutes_ago=10)
    await _audit(store, "SOA", sent, AuditStatus.SUCCESS, 200, minutes_ago=5)
    await _audit(store, "SOA", sent, AuditStatus.FAILURE, 300, minutes_ago=0)
    await _audit(
        store,
        "SOA",
        AuditEventType.ORDER_RECEIVED,
        AuditStatus.SUCCESS,
        0,
        direction=AuditDirection.INCOMING,
    )

    summary = await summarize_path(store, DeliveryPath.SOA)

    assert summary["total"] == 3
    assert summary["successes"] == 2
    assert summary["failures"] == 1
    assert summary["success_rate"] == pytest.approx(66.67)
    assert summary["avg_latency_ms"] == 200.0
    assert summary["p50_latency_ms"] == 200.0
    assert summary["min_latency_ms"] == 100
    assert summary["max_latency_ms"] == 300
    assert summary["requests_per_minute"] == pytest.approx(0.3, abs=0.01)


@pytest.mark.asyncio
async def test_empty_path_summary(store):
    summary = await summarize_path(store, DeliveryPath.SERVERLESS)

    assert summary["total"] == 0
    assert summary["success_rate"] is None
    assert summary["p95_latency_ms"] is None
    assert summary["requests_per_minute"] == 0.0


@pytest.mark.asyncio
async def test_compare_paths_window_and_winner(store):
    await _audit(store, "SOA", AuditEventType.STOCK_UPDATE_SENT, AuditStatus.SUCCESS, 900)
    await _audit(store, "SERVERLESS", AuditEventType.EVENT_PUBLISHED, AuditStatus.SUCCESS, 40)
    await _audit(store, "SERVERLESS", AuditEventType.EVENT_PUBLISHED, AuditStatus.SUCCESS, 5000, minutes_ago=60 * 48)
    await store.insert_order(
        OrderRecord(
            order_id="ORD-1",
            facility_id="Hospital-D",
            product_code="PHYSIO-SALINE-500ML",
            quantity=100,
            priority=OrderPriority.URGENT,
            status=OrderStatus.RECEIVED,
            estimated_delivery_date=utcnow() + timedelta(days=2),
            command_id="CMD-1",
        ),
        "SERVERLESS",
    )

    report = await compare_paths(store, hours=24)

    assert report["window_hours"] == 24
    assert report["paths"]["SOA"]["total"] == 1
    assert report["paths"]["SERVERLESS"]["total"] == 1
    assert report["paths"]["SERVERLESS"]["avg_latency_ms"] == 40.0
    assert report["paths"]["SERVERLESS"]["orders"] == 1
    assert report["paths"]["SOA"]["orders"] == 0
    assert report["faster_path"] == "SERVERLESS"


@pytest.mark.asyncio
async def test_order_counts_respect_window(store):
    for order_id, command_id, days_ago in (("ORD-OLD", "CMD-OLD", 3), ("ORD-NEW", "CMD-NEW", 0)):
        await store.insert_order(
            OrderRecord(
                order_id=order_id,
                facility_id="Hospital-D",
                product_code="PHYSIO-SALINE-500ML",
                quantity=50,
                priority=OrderPriority.NORMAL,
                status=OrderStatus.RECEIVED,
                estimated_delivery_date=utcnow() + timedelta(days=3),
                command_id=command_id,
                received_at=utcnow() - timedelta(days=days_ago),
            ),
            "SERVERLESS",
        )

    report = await compare_paths(store, hours=24)
    week = await compare_paths(store, hours=24 * 7)

    assert report["paths"]["SERVERLESS"]["orders"] == 1
    assert week["paths"]["SERVERLESS"]["orders"] == 2
    assert len(await store.query_orders_by_path(DeliveryPath.SERVERLESS, limit=None)) == 2


@pytest.mark.asyncio
async def test_no_winner_without_data_on_both_paths(store):
    await _audit(store, "SOA", AuditEventType.STOCK_UPDATE_SENT, AuditStatus.SUCCESS, 120)

    report = await compare_paths(store)

    assert report["faster_path"] is None
