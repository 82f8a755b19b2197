"""
Notification transports package.

Registered delivery paths:
  - SOA          SOAP stock update over HTTP (request/response)
  - SERVERLESS   InventoryLow events over a Kafka-protocol event hub
  - MOCK         logs only; fallback for unknown configuration

Importing the package registers every adapter.

Usage:
    from integrations import NotificationRouter

    router = NotificationRouter.from_settings(settings, http_client=client)
    receipt = await router.adapter.deliver(router.adapter.build_payload(alert))
"""

from integrations.base import (
    DeliveryReceipt,
    MockNotificationAdapter,
    NotificationAdapter,
    get_adapter,
    register_adapter,
    registered_adapters,
)
from integrations.errors import ErrorClassification, ErrorKind, ResponseFormatError, TransportFault, classify_error
from integrations.event_adapter import EventHubPublisherAdapter, OrderCommandStream, StreamMessage
from integrations.retry import RetryExecutor, RetryPolicy, RetryResult
from integrations.soap_adapter import SoapStockUpdateAdapter
from integrations.router import NotificationRouter, retry_policy_for, select_adapter

__all__ = [
    "DeliveryReceipt",
    "NotificationAdapter",
    "MockNotificationAdapter",
    "get_adapter",
    "register_adapter",
    "registered_adapters",
    "ErrorClassification",
    "ErrorKind",
    "TransportFault",
    "ResponseFormatError",
    "classify_error",
    "RetryExecutor",
    "RetryPolicy",
    "RetryResult",
    "SoapStockUpdateAdapter",
    "EventHubPublisherAdapter",
    "OrderCommandStream",
    "StreamMessage",
    "NotificationRouter",
    "retry_policy_for",
    "select_adapter",
]
