"""
Notification Adapter: Abstract Base Class

Both delivery paths (SOAP request/response and event-hub publish) plus
the mock implement this interface so the alert dispatcher is
transport-agnostic.

Lifecycle (owned by the process that builds the adapter, never by
first use):
    1. __init__(..., client=...)   - inject an already-built client
    2. start()                     - open connections
    3. build_payload(alert)        - alert -> path-specific payload
    4. deliver(payload)            - one send attempt, raises on failure
    5. close()                     - release connections
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import structlog

from core.types import AlertEvent, AuditEventType, DeliveryPath

logger = structlog.get_logger()


# ── Delivery receipt ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class DeliveryReceipt:
    """Common shape of a successful delivery, whatever the transport."""

    success: bool
    message: str
    order_triggered: bool = False
    order_id: str | None = None
    transport_latency_ms: int | None = None


# ── Abstract adapter ──────────────────────────────────────────────────────


class NotificationAdapter(ABC):
    """Base class for all notification transports."""

    #: Provenance tag written on audit/order rows; None means "never audited".
    path: DeliveryPath | None = None
    #: Audit event type used for the outgoing notification summary.
    event_type: AuditEventType | None = None

    def __init__(self, facility_id: str, product_code: str):
        self.facility_id = facility_id
        self.product_code = product_code
        self.logger = logger.bind(
            adapter=self.adapter_name,
            facility_id=facility_id,
        )

    @property
    @abstractmethod
    def adapter_name(self) -> str:
        """Path identifier this adapter is registered under."""
        ...

    @abstractmethod
    def build_payload(self, alert: AlertEvent) -> dict[str, Any]:
        """Convert the common alert into this transport's message shape."""
        ...

    @abstractmethod
    async def deliver(self, payload: dict[str, Any]) -> DeliveryReceipt:
        """Perform one delivery attempt. Failures are raised, never returned as None."""
        ...

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None


class MockNotificationAdapter(NotificationAdapter):
    """Stand-in used when no real path is configured (or the configured one is unknown)."""

    path = None
    event_type = None

    @property
    def adapter_name(self) -> str:
        return "MOCK"

    def build_payload(self, alert: AlertEvent) -> dict[str, Any]:
        return {
            "facility_id": alert.facility_id,
            "product_code": alert.product_code,
            "alert_type": alert.kind.value,
            "severity": alert.severity.value,
            "days_of_supply": alert.days_of_supply,
        }

    async def deliver(self, payload: dict[str, Any]) -> DeliveryReceipt:
        self.logger.info("mock.notification_sent", **payload)
        return DeliveryReceipt(success=True, message="mock delivery", order_triggered=False)


# ── Adapter registry ──────────────────────────────────────────────────────

_ADAPTER_REGISTRY: dict[str, type[NotificationAdapter]] = {}


def register_adapter(name: str):
    """Decorator: register an adapter class under a path identifier."""

    def decorator(adapter_cls: type[NotificationAdapter]) -> type[NotificationAdapter]:
        _ADAPTER_REGISTRY[name] = adapter_cls
        return adapter_cls

    return decorator


def registered_adapters() -> dict[str, type[NotificationAdapter]]:
    return dict(_ADAPTER_REGISTRY)


def get_adapter(name: str, facility_id: str, product_code: str, **clients: Any) -> NotificationAdapter:
    """Factory: return the adapter registered under ``name``, built with the given clients."""
    adapter_cls = _ADAPTER_REGISTRY.get(name)
    if adapter_cls is None:
        raise ValueError(f"No adapter registered for path: {name}")
    return adapter_cls(facility_id, product_code, **clients)


register_adapter("MOCK")(MockNotificationAdapter)
