"""
Event Stream Integration Adapter (serverless path)

Asynchronous publish/consume over a Kafka-protocol event hub.

Architecture:
    Evaluation loop → inventory-low-events → supply platform
    supply platform → order-commands       → ConsumptionLoop → Database

Outgoing event (InventoryLow):
    {
        "eventId": "evt-5f0c...",
        "eventType": "InventoryLow",
        "facilityId": "Hospital-D",
        "productCode": "PHYSIO-SALINE-500ML",
        "currentStockUnits": 10,
        "dailyConsumptionUnits": 20,
        "daysOfSupply": 0.5,
        "threshold": 2.0,
        "severity": "URGENT",
        "alertType": "CRITICAL_STOCK",
        "timestamp": "2026-01-07T12:00:00+00:00"
    }

Messages are keyed by facility id so one facility's events stay ordered
within a partition. The producer and consumer are injected; whoever
builds them owns start()/close().
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import structlog
from aiokafka import AIOKafkaConsumer, AIOKafkaProducer

from core.errors import PayloadValidationError
from core.types import AlertEvent, AuditEventType, DeliveryPath, utcnow
from integrations.base import DeliveryReceipt, NotificationAdapter, register_adapter

logger = structlog.get_logger()


# ── Event schema definitions ──────────────────────────────────────────────

INVENTORY_LOW_EVENT_TYPE = "InventoryLow"

INVENTORY_LOW_SCHEMA = {
    "required_fields": [
        "eventId",
        "facilityId",
        "productCode",
        "currentStockUnits",
        "dailyConsumptionUnits",
        "daysOfSupply",
        "threshold",
        "timestamp",
    ],
    "numeric_fields": ["currentStockUnits", "dailyConsumptionUnits", "daysOfSupply"],
}


def validate_event(event: dict[str, Any], schema: dict) -> list[str]:
    """Validate an event against its schema, returning list of errors."""
    errors = []
    for field in schema["required_fields"]:
        if field not in event:
            errors.append(f"Missing required field: {field}")
    for field in schema.get("numeric_fields", []):
        value = event.get(field)
        if field in event and (isinstance(value, bool) or not isinstance(value, (int, float))):
            errors.append(f"{field} must be a number")
    return errors


def build_inventory_low_event(alert: AlertEvent) -> dict[str, Any]:
    return {
        "eventId": f"evt-{uuid.uuid4()}",
        "eventType": INVENTORY_LOW_EVENT_TYPE,
        "facilityId": alert.facility_id,
        "productCode": alert.product_code,
        "currentStockUnits": alert.count_units,
        "dailyConsumptionUnits": alert.consumption_rate,
        "daysOfSupply": alert.days_of_supply,
        "threshold": alert.threshold,
        "severity": alert.severity.value,
        "alertType": alert.kind.value,
        "timestamp": alert.created_at.isoformat(),
    }


# ── Publisher ─────────────────────────────────────────────────────────────


@register_adapter("SERVERLESS")
class EventHubPublisherAdapter(NotificationAdapter):
    """Publishes InventoryLow events; fire-and-forget, so no order comes back."""

    path = DeliveryPath.SERVERLESS
    event_type = AuditEventType.EVENT_PUBLISHED

    def __init__(
        self,
        facility_id: str,
        product_code: str,
        *,
        producer: AIOKafkaProducer,
        topic: str,
    ):
        super().__init__(facility_id, product_code)
        self.producer = producer
        self.topic = topic

    @property
    def adapter_name(self) -> str:
        return "SERVERLESS"

    def build_payload(self, alert: AlertEvent) -> dict[str, Any]:
        return build_inventory_low_event(alert)

    async def start(self) -> None:
        await self.producer.start()
        self.logger.info("event_hub.producer_started", topic=self.topic)

    async def close(self) -> None:
        await self.producer.stop()
        self.logger.info("event_hub.producer_closed", topic=self.topic)

    async def publish(self, event: dict[str, Any]) -> int:
        """Publish one event and wait for the broker ack. Returns latency in ms."""
        errors = validate_event(event, INVENTORY_LOW_SCHEMA)
        if errors:
            raise PayloadValidationError("; ".join(errors))

        started = time.perf_counter()
        await self.producer.send_and_wait(
            self.topic,
            value=json.dumps(event).encode("utf-8"),
            key=str(event["facilityId"]).encode("utf-8"),
            headers=[("contentType", b"application/json")],
        )
        latency_ms = int((time.perf_counter() - started) * 1000)

        self.logger.info(
            "event_hub.event_published",
            event_id=event["eventId"],
            days_of_supply=event["daysOfSupply"],
            latency_ms=latency_ms,
        )
        return latency_ms

    async def deliver(self, payload: dict[str, Any]) -> DeliveryReceipt:
        latency_ms = await self.publish(payload)
        return DeliveryReceipt(
            success=True,
            message=f"Event {payload['eventId']} published",
            transport_latency_ms=latency_ms,
        )


# ── Consumer ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StreamMessage:
    """One inbound message. ``value`` is decoded JSON, or raw text if it did not parse."""

    value: Any
    topic: str
    partition: int
    offset: int


def decode_message_value(raw: bytes | None) -> Any:
    if raw is None:
        return None
    text = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


class OrderCommandStream:
    """
    Inbound order commands from the event hub.

    Config comes from Settings (kafka_order_topic, kafka_consumer_group).
    The consumer is built by the caller and subscribed to the order topic.
    """

    def __init__(
        self,
        consumer: AIOKafkaConsumer,
        *,
        poll_timeout_ms: int = 1000,
        max_records: int = 100,
        poll_error_backoff_seconds: float = 5.0,
    ):
        self.consumer = consumer
        self.poll_timeout_ms = poll_timeout_ms
        self.max_records = max_records
        self.poll_error_backoff_seconds = poll_error_backoff_seconds
        self.poll_failures = 0

    async def start(self) -> None:
        await self.consumer.start()
        logger.info("order_stream.started", topics=sorted(self.consumer.subscription() or []))

    async def close(self) -> None:
        await self.consumer.stop()
        logger.info("order_stream.closed")

    async def messages(self, shutdown: asyncio.Event) -> AsyncIterator[StreamMessage]:
        """Yield messages until ``shutdown`` is set. A batch already fetched is drained first."""
        while not shutdown.is_set():
            try:
                batch = await self.consumer.getmany(timeout_ms=self.poll_timeout_ms, max_records=self.max_records)
            except Exception as exc:  # noqa: BLE001
                self.poll_failures += 1
                logger.error(
                    "order_stream.poll_failed",
                    failures=self.poll_failures,
                    backoff_seconds=self.poll_error_backoff_seconds,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                try:
                    await asyncio.wait_for(shutdown.wait(), timeout=self.poll_error_backoff_seconds)
                except asyncio.TimeoutError:
                    pass
                continue
            for tp, records in batch.items():
                if records:
                    logger.debug("order_stream.batch_received", partition=tp.partition, count=len(records))
                for record in records:
                    yield StreamMessage(
                        value=decode_message_value(record.value),
                        topic=tp.topic,
                        partition=tp.partition,
                        offset=record.offset,
                    )
