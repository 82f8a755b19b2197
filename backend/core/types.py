"""
Domain types shared by the evaluation, dispatch and ingestion paths.

Enum values double as the stored column values, so they must stay in
sync with the CHECK constraints in db.models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryPath(str, Enum):
    """Provenance tag: which delivery path produced a record."""

    SOA = "SOA"  # synchronous request/response (SOAP)
    SERVERLESS = "SERVERLESS"  # asynchronous publish/consume (event hub)


class AlertKind(str, Enum):
    OUT_OF_STOCK = "OUT_OF_STOCK"
    CRITICAL_STOCK = "CRITICAL_STOCK"
    LOW_STOCK = "LOW_STOCK"
    SUFFICIENT_STOCK = "SUFFICIENT_STOCK"


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    URGENT = "URGENT"
    HIGH = "HIGH"
    NORMAL = "NORMAL"


class OrderPriority(str, Enum):
    URGENT = "URGENT"
    HIGH = "HIGH"
    NORMAL = "NORMAL"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    RECEIVED = "RECEIVED"
    DELIVERED = "DELIVERED"


class AuditEventType(str, Enum):
    STOCK_UPDATE_SENT = "STOCK_UPDATE_SENT"
    EVENT_PUBLISHED = "EVENT_PUBLISHED"
    ORDER_RECEIVED = "ORDER_RECEIVED"


class AuditDirection(str, Enum):
    OUTGOING = "OUTGOING"
    INCOMING = "INCOMING"


class AuditStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


# ── Value objects ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AlertEvent:
    """A single threshold breach. Immutable once created."""

    kind: AlertKind
    severity: Severity
    count_units: int
    consumption_rate: float
    days_of_supply: float
    threshold: float
    facility_id: str
    product_code: str
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class OrderRecord:
    order_id: str
    facility_id: str
    product_code: str
    quantity: int
    priority: OrderPriority
    status: OrderStatus
    estimated_delivery_date: datetime
    command_id: str | None = None
    warehouse_id: str = "CENTRAL-WAREHOUSE"
    notes: str | None = None
    received_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class AuditEvent:
    """Append-only audit entry. The path tag is passed separately at write time."""

    event_type: AuditEventType
    direction: AuditDirection
    status: AuditStatus
    payload: dict[str, Any] | None = None
    latency_ms: int | None = None
    error_message: str | None = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class NotificationOutcome:
    """Result of one complete dispatch (all retries resolved or exhausted)."""

    success: bool
    latency_ms: int
    path: DeliveryPath | None
    error_message: str | None = None
    attempts: int = 0
    alert_id: int | None = None
    order_triggered: bool = False
    order_id: str | None = None
    order_error: str | None = None
    audit_error: str | None = None
    stock_status: str | None = None
    recommended_quantity: int | None = None
