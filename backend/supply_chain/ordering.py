"""
Order Ingestion: inbound order commands from either delivery path.

Handles one command at a time:
1. Check the path tag (before anything else)
2. Validate the command shape (commandId, orderId, facility, quantity > 0, priority)
3. Skip commands addressed to another facility (normal on a shared stream)
4. Insert the order with status RECEIVED, tagged with the path
5. Append an ORDER_RECEIVED audit row (SUCCESS or FAILURE)

Duplicate delivery is expected. There is no in-memory dedup: the unique
constraint on supply_orders.command_id rejects the second insert, the
failure is audited with the storage error text, and DuplicateCommandError
is re-raised to the caller.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from core.errors import DuplicateOrderError, OrderValidationError
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
from db.store import SupplyStore
from integrations.errors import classify_error

logger = structlog.get_logger()

NOT_FOR_THIS_FACILITY = "NOT_FOR_THIS_FACILITY"
DEFAULT_DELIVERY_LEAD_DAYS = 2


# ─── Command schema ─────────────────────────────────────────────────────────


class OrderCommand(BaseModel):
    """Inbound order command. Accepts the camelCase wire names."""

    command_id: str = Field(..., min_length=1, validation_alias=AliasChoices("commandId", "command_id"))
    order_id: str = Field(..., min_length=1, validation_alias=AliasChoices("orderId", "order_id"))
    facility_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("facilityId", "hospitalId", "facility_id"),
    )
    product_code: str = Field(..., min_length=1, validation_alias=AliasChoices("productCode", "product_code"))
    quantity: int = Field(..., gt=0, validation_alias=AliasChoices("orderQuantity", "quantity"))
    priority: OrderPriority = OrderPriority.HIGH
    estimated_delivery_date: datetime | None = Field(
        None, validation_alias=AliasChoices("estimatedDeliveryDate", "estimated_delivery_date")
    )
    warehouse_id: str = Field(
        "CENTRAL-WAREHOUSE", min_length=1, validation_alias=AliasChoices("warehouseId", "warehouse_id")
    )
    notes: str | None = None

    model_config = {"extra": "ignore", "frozen": True}

    @field_validator("priority", mode="before")
    @classmethod
    def default_priority(cls, value: Any) -> Any:
        if value is None or value == "":
            return OrderPriority.HIGH
        return value

    @field_validator("warehouse_id", mode="before")
    @classmethod
    def default_warehouse(cls, value: Any) -> Any:
        if value is None or value == "":
            return "CENTRAL-WAREHOUSE"
        return value

    def to_record(self, status: OrderStatus = OrderStatus.RECEIVED) -> OrderRecord:
        delivery = self.estimated_delivery_date or utcnow() + timedelta(days=DEFAULT_DELIVERY_LEAD_DAYS)
        return OrderRecord(
            order_id=self.order_id,
            command_id=self.command_id,
            facility_id=self.facility_id,
            product_code=self.product_code,
            quantity=self.quantity,
            priority=self.priority,
            status=status,
            estimated_delivery_date=delivery,
            warehouse_id=self.warehouse_id,
            notes=self.notes,
        )


def _describe(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "command"
        if error["type"] == "missing":
            problems.append(f"Missing required field: {field}")
        else:
            problems.append(f"Invalid {field}: {error['msg']}")
    return "; ".join(problems)


def parse_order_command(raw: Any) -> OrderCommand:
    """Validate a decoded message body. Raises OrderValidationError."""
    if isinstance(raw, OrderCommand):
        return raw
    if not isinstance(raw, dict):
        raise OrderValidationError(f"Command body must be a JSON object, got {type(raw).__name__}")
    if not raw:
        raise OrderValidationError("Command data is empty")
    try:
        return OrderCommand.model_validate(raw)
    except ValidationError as exc:
        raise OrderValidationError(_describe(exc)) from exc


# ─── Ingestor ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class IngestResult:
    processed: bool
    reason: str | None = None
    order_id: str | None = None
    latency_ms: int | None = None


class OrderIngestor:
    """Idempotent order-command handler for one facility."""

    def __init__(self, store: SupplyStore, facility_id: str):
        self.store = store
        self.facility_id = facility_id

    async def ingest(self, command: Any, path: Any) -> IngestResult:
        started = time.perf_counter()
        path = self.store.guard.check(path)

        try:
            cmd = parse_order_command(command)
        except OrderValidationError as exc:
            logger.warning("order.invalid_command", path=path.value, error=str(exc))
            raise

        log = logger.bind(command_id=cmd.command_id, order_id=cmd.order_id, path=path.value)

        if cmd.facility_id != self.facility_id:
            log.info("order.not_for_this_facility", received_for=cmd.facility_id, expected=self.facility_id)
            return IngestResult(processed=False, reason=NOT_FOR_THIS_FACILITY)

        payload = cmd.model_dump(mode="json")
        try:
            await self.store.insert_order(cmd.to_record(OrderStatus.RECEIVED), path)
        except Exception as exc:
            latency_ms = int((time.perf_counter() - started) * 1000)
            log.error(
                "order.ingest_failed",
                duplicate=isinstance(exc, DuplicateOrderError),
                latency_ms=latency_ms,
                **classify_error(exc).as_log_fields(),
            )
            await self._audit(payload, path, AuditStatus.FAILURE, latency_ms, str(exc))
            raise

        latency_ms = int((time.perf_counter() - started) * 1000)
        log.info("order.ingested", quantity=cmd.quantity, priority=cmd.priority.value, latency_ms=latency_ms)
        await self._audit(payload, path, AuditStatus.SUCCESS, latency_ms, None)
        return IngestResult(processed=True, order_id=cmd.order_id, latency_ms=latency_ms)

    async def _audit(
        self,
        payload: dict[str, Any],
        path: DeliveryPath,
        status: AuditStatus,
        latency_ms: int,
        error_message: str | None,
    ) -> None:
        """Best-effort audit append; its own failure never replaces the primary result."""
        event = AuditEvent(
            event_type=AuditEventType.ORDER_RECEIVED,
            direction=AuditDirection.INCOMING,
            status=status,
            payload=payload,
            latency_ms=latency_ms,
            error_message=error_message,
        )
        try:
            await self.store.append_audit_event(event, path)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "order.audit_write_failed",
                command_id=payload.get("command_id"),
                status=status.value,
                error=str(exc),
            )
