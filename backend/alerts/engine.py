"""
Alert Engine: threshold evaluation and notification dispatch.

Sequence for one evaluation:
  1. read the stock row and compute days of supply
  2. compare against the configured reorder threshold
  3. on breach: classify severity and persist the alert (always kept)
  4. deliver through the selected adapter under the path's retry policy,
     timing the whole retry sequence
  5. append exactly one OUTGOING audit row for the final outcome
  6. if the counterparty triggered an order, derive quantity/priority and
     write the order plus an INCOMING audit row

Steps 5 and 6 are secondary writes: their failures are captured on the
NotificationOutcome and logged, never raised. A delivery failure never
removes the alert written in step 3.
"""

from __future__ import annotations

import asyncio
import time
from datetime import timedelta
from typing import Any

import structlog

from alerts.severity import (
    ORDER_TARGET_DAYS,
    alert_message,
    build_alert_event,
    derive_order_priority,
    derive_order_quantity,
)
from core.errors import PayloadValidationError, StockNotFoundError
from core.types import (
    AlertEvent,
    AuditDirection,
    AuditEvent,
    AuditEventType,
    AuditStatus,
    DeliveryPath,
    NotificationOutcome,
    OrderRecord,
    OrderStatus,
    utcnow,
)
from db.store import SupplyStore
from integrations.base import DeliveryReceipt, NotificationAdapter
from integrations.errors import classify_error
from integrations.retry import AttemptHook, RetryExecutor, RetryResult, Sleep
from integrations.router import NotificationRouter
from inventory.stock import DEFAULT_REORDER_THRESHOLD, StockState, recommended_order_quantity, stock_status

logger = structlog.get_logger()

DELIVERY_LEAD_DAYS = 2
DEFAULT_WAREHOUSE = "CENTRAL-WAREHOUSE"


class AlertDispatcher:
    """Evaluates one facility/product and notifies through the routed adapter."""

    def __init__(
        self,
        store: SupplyStore,
        router: NotificationRouter,
        *,
        reorder_threshold: float = DEFAULT_REORDER_THRESHOLD,
        order_target_days: int = ORDER_TARGET_DAYS,
        warehouse_id: str = DEFAULT_WAREHOUSE,
        max_stock_level: int | None = None,
        sleep: Sleep = asyncio.sleep,
        on_attempt: AttemptHook | None = None,
    ):
        self.store = store
        self.router = router
        self.reorder_threshold = reorder_threshold
        self.order_target_days = order_target_days
        self.warehouse_id = warehouse_id
        self.max_stock_level = max_stock_level
        self._sleep = sleep
        self.on_attempt = on_attempt

    @property
    def adapter(self) -> NotificationAdapter:
        return self.router.adapter

    # ── Evaluation ─────────────────────────────────────────────────────

    async def evaluate(self, cancel_event: asyncio.Event | None = None) -> NotificationOutcome | None:
        """Check the current stock; dispatch if the threshold is breached. None when no alert."""
        row = await self.store.get_current_stock()
        if row is None:
            raise StockNotFoundError(self.store.facility_id, self.store.product_code)

        state = StockState(
            count_units=row.current_stock_units,
            consumption_rate=row.daily_consumption_units,
            reorder_threshold=self.reorder_threshold,
        )
        days = state.days_of_supply
        if not state.threshold_breached:
            logger.debug(
                "evaluation.stock_sufficient",
                days_of_supply=days,
                threshold=self.reorder_threshold,
            )
            return None

        alert = build_alert_event(
            state,
            facility_id=self.store.facility_id,
            product_code=self.store.product_code,
        )
        status = stock_status(state.count_units, state.consumption_rate)
        max_level = self.max_stock_level if self.max_stock_level is not None else row.max_stock_level
        recommended = recommended_order_quantity(state.count_units, max_level) if max_level else None
        logger.warning(
            "evaluation.threshold_breached",
            days_of_supply=days,
            threshold=self.reorder_threshold,
            alert_type=alert.kind.value,
            severity=alert.severity.value,
            stock_status=status,
            recommended_quantity=recommended,
            message=alert_message(alert.kind, days),
        )
        outcome = await self.dispatch(alert, cancel_event=cancel_event)
        outcome.stock_status = status
        outcome.recommended_quantity = recommended
        return outcome

    # ── Dispatch ───────────────────────────────────────────────────────

    async def dispatch(self, alert: AlertEvent, cancel_event: asyncio.Event | None = None) -> NotificationOutcome:
        adapter = self.adapter
        alert_row = await self.store.insert_alert(alert)

        started = time.perf_counter()
        payload: dict[str, Any] | None = None
        try:
            payload = adapter.build_payload(alert)
        except PayloadValidationError as exc:
            result: RetryResult[DeliveryReceipt] = RetryResult(error=exc, classification=classify_error(exc))
        else:
            executor = RetryExecutor(self.router.policy, sleep=self._sleep, on_attempt=self.on_attempt)
            result = await executor.run(
                lambda: adapter.deliver(payload),
                name=f"notify.{adapter.adapter_name.lower()}",
                cancel_event=cancel_event,
            )
        latency_ms = int((time.perf_counter() - started) * 1000)

        receipt = result.value if result.ok else None
        success = receipt is not None and receipt.success
        if receipt is not None and not receipt.success:
            error_message = receipt.message or "Counterparty reported failure"
        elif result.error is not None:
            error_message = str(result.error) or type(result.error).__name__
        else:
            error_message = None

        outcome = NotificationOutcome(
            success=success,
            latency_ms=latency_ms,
            path=adapter.path,
            error_message=error_message,
            attempts=result.attempts,
            alert_id=alert_row.alert_id,
            order_triggered=bool(receipt and receipt.order_triggered),
        )

        log = logger.bind(adapter=adapter.adapter_name, alert_id=alert_row.alert_id, attempts=result.attempts)
        if success:
            log.info("dispatch.delivered", latency_ms=latency_ms, order_triggered=outcome.order_triggered)
        else:
            fields = result.classification.as_log_fields() if result.classification else {"error": error_message}
            log.error("dispatch.failed", latency_ms=latency_ms, cancelled=result.cancelled, **fields)

        if adapter.path is None:
            log.info("dispatch.not_audited", reason="no_provenance")
            return outcome

        await self._record_outcome(adapter, outcome, payload)

        if success and outcome.order_triggered:
            await self._absorb_order(alert, receipt, adapter.path, outcome)

        return outcome

    async def _record_outcome(
        self,
        adapter: NotificationAdapter,
        outcome: NotificationOutcome,
        payload: dict[str, Any] | None,
    ) -> None:
        event = AuditEvent(
            event_type=adapter.event_type,
            direction=AuditDirection.OUTGOING,
            status=AuditStatus.SUCCESS if outcome.success else AuditStatus.FAILURE,
            payload={"request": payload, "attempts": outcome.attempts, "alertId": outcome.alert_id},
            latency_ms=outcome.latency_ms,
            error_message=outcome.error_message,
        )
        try:
            await self.store.append_audit_event(event, adapter.path)
        except Exception as exc:  # noqa: BLE001
            outcome.audit_error = str(exc)
            logger.error("dispatch.audit_write_failed", path=adapter.path.value, error=str(exc))

    async def _absorb_order(
        self,
        alert: AlertEvent,
        receipt: DeliveryReceipt,
        path: DeliveryPath,
        outcome: NotificationOutcome,
    ) -> None:
        """Write the counterparty-triggered order. Failures land on ``outcome.order_error``."""
        if not receipt.order_id:
            outcome.order_error = "Order triggered without an order id"
            logger.error("dispatch.order_missing_id", path=path.value)
            return

        record = OrderRecord(
            order_id=receipt.order_id,
            facility_id=alert.facility_id,
            product_code=alert.product_code,
            quantity=derive_order_quantity(alert.consumption_rate, self.order_target_days),
            priority=derive_order_priority(alert.days_of_supply),
            status=OrderStatus.PENDING,
            estimated_delivery_date=utcnow() + timedelta(days=DELIVERY_LEAD_DAYS),
            warehouse_id=self.warehouse_id,
            notes=f"Auto-triggered by {path.value} stock update (days of supply: {alert.days_of_supply})",
        )
        order_payload = {
            "orderId": record.order_id,
            "quantity": record.quantity,
            "priority": record.priority.value,
            "status": record.status.value,
        }

        try:
            await self.store.insert_order(record, path)
        except Exception as exc:  # noqa: BLE001
            outcome.order_error = str(exc)
            logger.error("dispatch.order_write_failed", order_id=record.order_id, path=path.value, error=str(exc))
            await self._append_order_audit(order_payload, path, AuditStatus.FAILURE, str(exc))
            return

        outcome.order_id = record.order_id
        logger.info(
            "dispatch.order_recorded",
            order_id=record.order_id,
            quantity=record.quantity,
            priority=record.priority.value,
            path=path.value,
        )
        await self._append_order_audit(order_payload, path, AuditStatus.SUCCESS, None)

    async def _append_order_audit(
        self,
        payload: dict[str, Any],
        path: DeliveryPath,
        status: AuditStatus,
        error_message: str | None,
    ) -> None:
        event = AuditEvent(
            event_type=AuditEventType.ORDER_RECEIVED,
            direction=AuditDirection.INCOMING,
            status=status,
            payload=payload,
            latency_ms=0,
            error_message=error_message,
        )
        try:
            await self.store.append_audit_event(event, path)
        except Exception as exc:  # noqa: BLE001
            logger.error("dispatch.order_audit_failed", order_id=payload.get("orderId"), error=str(exc))
