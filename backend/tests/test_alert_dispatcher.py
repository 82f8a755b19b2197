"""
Tests for the alert dispatcher (evaluate -> persist -> deliver -> audit).

Adapters are scripted fakes, or the real SOAP adapter over
httpx.MockTransport for the end-to-end scenario.
"""

import httpx
import pytest
from sqlalchemy import func, select

from alerts.engine import AlertDispatcher
from core.errors import StockNotFoundError
from core.types import AuditEventType, DeliveryPath
from db.models import AuditLogEntry, StockAlert
from integrations.base import DeliveryReceipt, MockNotificationAdapter, NotificationAdapter
from integrations.errors import TransportFault
from integrations.retry import RetryPolicy
from integrations.router import NotificationRouter
from integrations.soap_adapter import SoapStockUpdateAdapter
from inventory.stock import update_stock_level


class ScriptedAdapter(NotificationAdapter):
    """Returns or raises the queued outcomes in order; repeats the last one."""

    path = DeliveryPath.SOA
    event_type = AuditEventType.STOCK_UPDATE_SENT

    def __init__(self, outcomes):
        super().__init__("Hospital-D", "PHYSIO-SALINE-500ML")
        self.outcomes = list(outcomes)
        self.calls = 0

    @property
    def adapter_name(self) -> str:
        return "SOA"

    def build_payload(self, alert):
        return {"facilityId": alert.facility_id, "daysOfSupply": alert.days_of_supply}

    async def deliver(self, payload):
        self.calls += 1
        outcome = self.outcomes[0] if len(self.outcomes) == 1 else self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


async def _count(session_factory, model):
    async with session_factory() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar_one()


def _dispatcher(store, adapter, recording_sleep, policy=None, **kwargs):
    router = NotificationRouter(adapter, policy or RetryPolicy.fixed([5000, 15000, 30000], max_attempts=3))
    return AlertDispatcher(store, router, sleep=recording_sleep, **kwargs)


# ── End-to-end ────────────────────────────────────────────────────────


class TestCriticalShortageScenario:
    @pytest.mark.asyncio
    async def test_ten_units_twenty_per_day_triggers_urgent_order(self, store, recording_sleep, soap_response):
        await update_stock_level(store, 10, 20)

        def handler(request):
            assert b"<tns:daysOfSupply>0.5</tns:daysOfSupply>" in request.content
            assert b"<tns:alertSeverity>URGENT</tns:alertSeverity>" in request.content
            return httpx.Response(200, content=soap_response(order_triggered=True, order_id="ORD-123"))

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            adapter = SoapStockUpdateAdapter(
                "Hospital-D",
                "PHYSIO-SALINE-500ML",
                client=client,
                endpoint="http://supply.example/StockUpdateService",
                namespace="http://supplychain.example.org/stockupdate",
            )
            outcome = await _dispatcher(store, adapter, recording_sleep).evaluate()

        assert outcome.success is True
        assert outcome.path == DeliveryPath.SOA
        assert outcome.order_triggered is True
        assert outcome.order_id == "ORD-123"
        assert outcome.order_error is None

        alerts = await store.list_unacknowledged_alerts()
        assert [(a.alert_type, a.severity) for a in alerts] == [("CRITICAL_STOCK", "URGENT")]

        orders = await store.query_orders_by_path(DeliveryPath.SOA)
        assert len(orders) == 1
        assert orders[0].order_quantity == 100
        assert orders[0].priority == "URGENT"
        assert orders[0].order_status == "PENDING"
        assert orders[0].command_id is None

        audit = await store.query_audit_by_path(DeliveryPath.SOA)
        assert sorted((a.event_type, a.direction, a.status) for a in audit) == [
            ("ORDER_RECEIVED", "INCOMING", "SUCCESS"),
            ("STOCK_UPDATE_SENT", "OUTGOING", "SUCCESS"),
        ]


# ── Evaluation ────────────────────────────────────────────────────────


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_sufficient_stock_does_nothing(self, store, session_factory, recording_sleep):
        await update_stock_level(store, 100, 20)
        adapter = ScriptedAdapter([DeliveryReceipt(success=True, message="ok")])

        assert await _dispatcher(store, adapter, recording_sleep).evaluate() is None
        assert adapter.calls == 0
        assert await _count(session_factory, StockAlert) == 0

    @pytest.mark.asyncio
    async def test_configured_threshold_is_used(self, store, recording_sleep):
        await update_stock_level(store, 50, 20)  # 2.5 days
        adapter = ScriptedAdapter([DeliveryReceipt(success=True, message="ok")])

        outcome = await _dispatcher(store, adapter, recording_sleep, reorder_threshold=3.0).evaluate()

        assert outcome.success is True
        alerts = await store.list_unacknowledged_alerts()
        assert alerts[0].alert_type == "SUFFICIENT_STOCK"
        assert alerts[0].threshold == 3.0

    @pytest.mark.asyncio
    async def test_outcome_carries_stock_status_and_recommendation(self, store, recording_sleep):
        await update_stock_level(store, 10, 20, max_stock_level=500)
        adapter = ScriptedAdapter([DeliveryReceipt(success=True, message="ok")])

        outcome = await _dispatcher(store, adapter, recording_sleep).evaluate()

        assert outcome.stock_status == "URGENT"
        assert outcome.recommended_quantity == 490

    @pytest.mark.asyncio
    async def test_configured_max_stock_level_overrides_row(self, store, recording_sleep):
        await update_stock_level(store, 10, 20, max_stock_level=500)
        adapter = ScriptedAdapter([DeliveryReceipt(success=True, message="ok")])

        outcome = await _dispatcher(store, adapter, recording_sleep, max_stock_level=333).evaluate()

        assert outcome.recommended_quantity == 330

    @pytest.mark.asyncio
    async def test_missing_stock_row(self, store, recording_sleep):
        adapter = ScriptedAdapter([DeliveryReceipt(success=True, message="ok")])
        with pytest.raises(StockNotFoundError):
            await _dispatcher(store, adapter, recording_sleep).evaluate()


# ── Failure handling ──────────────────────────────────────────────────


class TestDispatchFailures:
    @pytest.mark.asyncio
    async def test_exhausted_retries_keep_alert_and_audit_one_failure(self, store, session_factory, recording_sleep):
        await update_stock_level(store, 10, 20)
        adapter = ScriptedAdapter([TimeoutError("SOAP request timed out")])

        outcome = await _dispatcher(store, adapter, recording_sleep).evaluate()

        assert outcome.success is False
        assert outcome.attempts == 3
        assert adapter.calls == 3
        assert "timed out" in outcome.error_message
        assert recording_sleep.calls == [5.0, 15.0]
        assert recording_sleep.total_ms == 20000
        assert await _count(session_factory, StockAlert) == 1

        audit = await store.query_audit_by_path(DeliveryPath.SOA)
        assert len(audit) == 1
        assert audit[0].status == "FAILURE"
        assert audit[0].error_message
        assert audit[0].latency_ms >= 0

    @pytest.mark.asyncio
    async def test_client_fault_is_not_retried(self, store, recording_sleep):
        await update_stock_level(store, 10, 20)
        adapter = ScriptedAdapter([TransportFault("soap:Client", "Unknown productCode")])

        outcome = await _dispatcher(store, adapter, recording_sleep).evaluate()

        assert outcome.success is False
        assert adapter.calls == 1
        assert recording_sleep.calls == []

    @pytest.mark.asyncio
    async def test_counterparty_reported_failure(self, store, recording_sleep):
        await update_stock_level(store, 10, 20)
        adapter = ScriptedAdapter([DeliveryReceipt(success=False, message="Facility suspended")])

        outcome = await _dispatcher(store, adapter, recording_sleep).evaluate()

        assert outcome.success is False
        assert outcome.error_message == "Facility suspended"
        audit = await store.query_audit_by_path(DeliveryPath.SOA)
        assert [a.status for a in audit] == ["FAILURE"]

    @pytest.mark.asyncio
    async def test_order_write_failure_is_reported_separately(self, store, recording_sleep):
        await update_stock_level(store, 10, 20)
        receipt = DeliveryReceipt(success=True, message="ok", order_triggered=True, order_id="ORD-DUP")
        dispatcher = _dispatcher(store, ScriptedAdapter([receipt]), recording_sleep)

        first = await dispatcher.evaluate()
        second = await dispatcher.evaluate()

        assert first.order_error is None
        assert second.success is True
        assert second.order_id is None
        assert second.order_error
        assert len(await store.query_orders_by_path(DeliveryPath.SOA)) == 1

        audit = await store.query_audit_by_path(DeliveryPath.SOA, event_type=AuditEventType.ORDER_RECEIVED)
        assert sorted(a.status for a in audit) == ["FAILURE", "SUCCESS"]

    @pytest.mark.asyncio
    async def test_audit_write_failure_is_captured(self, store, recording_sleep, monkeypatch):
        await update_stock_level(store, 10, 20)

        async def broken_append(event, path):
            raise RuntimeError("audit table offline")

        monkeypatch.setattr(store, "append_audit_event", broken_append)
        adapter = ScriptedAdapter([DeliveryReceipt(success=True, message="ok")])

        outcome = await _dispatcher(store, adapter, recording_sleep).evaluate()

        assert outcome.success is True
        assert outcome.audit_error == "audit table offline"


# ── Mock path ─────────────────────────────────────────────────────────


class TestMockPath:
    @pytest.mark.asyncio
    async def test_mock_outcome_is_not_audited(self, store, session_factory, recording_sleep):
        await update_stock_level(store, 10, 20)
        adapter = MockNotificationAdapter("Hospital-D", "PHYSIO-SALINE-500ML")

        outcome = await _dispatcher(store, adapter, recording_sleep, policy=RetryPolicy.fixed([])).evaluate()

        assert outcome.success is True
        assert outcome.path is None
        assert await _count(session_factory, StockAlert) == 1
        assert await _count(session_factory, AuditLogEntry) == 0
