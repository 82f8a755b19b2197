"""
Notification router: path identifier -> adapter instance.

The registry is populated when the integrations package is imported, so
the set of known paths is fixed at startup. An unknown identifier
resolves to the mock adapter with a warning; it never raises.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from aiokafka import AIOKafkaProducer

from core.config import Settings
from integrations.base import MockNotificationAdapter, NotificationAdapter, get_adapter, registered_adapters
from integrations.retry import RetryPolicy

logger = structlog.get_logger()

MOCK_PATH = "MOCK"


def normalize_path_id(raw: Any) -> str:
    return str(raw).strip().upper() if raw is not None else ""


def retry_policy_for(settings: Settings, path_id: str) -> RetryPolicy:
    return settings.retry_policy_for(normalize_path_id(path_id))


class NotificationRouter:
    """Holds the adapter selected for this process and its retry policy."""

    def __init__(self, adapter: NotificationAdapter, policy: RetryPolicy, *, requested: str | None = None):
        self.adapter = adapter
        self.policy = policy
        self.requested = requested if requested is not None else adapter.adapter_name

    @property
    def path_id(self) -> str:
        return self.adapter.adapter_name

    @property
    def fell_back(self) -> bool:
        return self.requested != self.path_id

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
        producer: AIOKafkaProducer | None = None,
    ) -> "NotificationRouter":
        """Build the adapter for ``settings.notification_path`` with injected clients."""
        requested = normalize_path_id(settings.notification_path)
        adapter = select_adapter(requested, settings, http_client=http_client, producer=producer)
        return cls(adapter, retry_policy_for(settings, adapter.adapter_name), requested=requested)

    async def start(self) -> None:
        await self.adapter.start()

    async def close(self) -> None:
        await self.adapter.close()


def select_adapter(
    path_id: str,
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
    producer: AIOKafkaProducer | None = None,
) -> NotificationAdapter:
    path_id = normalize_path_id(path_id)
    known = registered_adapters()

    if path_id not in known:
        logger.warning(
            "router.unknown_path",
            requested=path_id or None,
            known=sorted(known),
            fallback=MOCK_PATH,
        )
        return MockNotificationAdapter(settings.facility_id, settings.product_code)

    clients: dict[str, Any] = {}
    if path_id == "SOA":
        if http_client is None:
            raise ValueError("SOA path selected but no HTTP client was provided")
        clients = {
            "client": http_client,
            "endpoint": settings.soap_endpoint,
            "namespace": settings.soap_namespace,
            "username": settings.soap_username,
            "password": settings.soap_password,
            "timeout_seconds": settings.soap_timeout_seconds,
        }
    elif path_id == "SERVERLESS":
        if producer is None:
            raise ValueError("SERVERLESS path selected but no event-hub producer was provided")
        clients = {"producer": producer, "topic": settings.kafka_inventory_topic}

    adapter = get_adapter(path_id, settings.facility_id, settings.product_code, **clients)
    logger.info("router.adapter_selected", path=path_id, adapter=type(adapter).__name__)
    return adapter
