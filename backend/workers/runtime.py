"""
Monitor runtime: builds and owns every client for one monitor process.

Start order:  engine -> tables -> store -> transport clients -> router
              -> order stream (optional)
Close order:  reverse. Only clients built here are closed here; injected
              ones belong to the caller.

SIGINT/SIGTERM set the shutdown event. The evaluation loop finishes its
in-flight attempt, skips any pending retry wait and stops; the
consumption loop stops after the current poll.
"""

from __future__ import annotations

import asyncio
import signal

import httpx
import structlog
from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from sqlalchemy.ext.asyncio import AsyncEngine

from alerts.engine import AlertDispatcher
from audit.provenance import require_path
from core.config import Settings
from core.types import NotificationOutcome
from db.session import create_engine_from_settings, create_session_factory, init_models
from db.store import SupplyStore
from integrations.event_adapter import OrderCommandStream
from integrations.router import NotificationRouter, normalize_path_id
from supply_chain.ordering import OrderIngestor
from workers.consumer import ConsumptionLoop
from workers.evaluation import EvaluationLoop

logger = structlog.get_logger()


class MonitorRuntime:
    def __init__(
        self,
        settings: Settings,
        *,
        consume: bool | None = None,
        engine: AsyncEngine | None = None,
        http_client: httpx.AsyncClient | None = None,
        producer: AIOKafkaProducer | None = None,
        consumer: AIOKafkaConsumer | None = None,
    ):
        self.settings = settings
        self.consume = settings.order_consumer_enabled if consume is None else consume
        self.shutdown = asyncio.Event()

        self.engine = engine
        self.http_client = http_client
        self.producer = producer
        self.consumer = consumer
        self._owned_engine = engine is None
        self._owned_http_client = False

        self.store: SupplyStore | None = None
        self.router: NotificationRouter | None = None
        self.stream: OrderCommandStream | None = None
        self.evaluation: EvaluationLoop | None = None
        self.consumption: ConsumptionLoop | None = None
        self._started = False

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._started:
            return
        settings = self.settings

        if self.engine is None:
            self.engine = create_engine_from_settings(settings)
        await init_models(self.engine)
        self.store = SupplyStore(
            create_session_factory(self.engine),
            facility_id=settings.facility_id,
            product_code=settings.product_code,
        )

        path_id = normalize_path_id(settings.notification_path)
        if path_id == "SOA" and self.http_client is None:
            self.http_client = httpx.AsyncClient(timeout=settings.soap_timeout_seconds)
            self._owned_http_client = True
        if path_id == "SERVERLESS" and self.producer is None:
            self.producer = AIOKafkaProducer(bootstrap_servers=settings.kafka_bootstrap_servers)

        self.router = NotificationRouter.from_settings(settings, http_client=self.http_client, producer=self.producer)
        await self.router.start()

        dispatcher = AlertDispatcher(
            self.store,
            self.router,
            reorder_threshold=settings.reorder_threshold,
            order_target_days=settings.order_target_days,
            warehouse_id=settings.warehouse_id,
            max_stock_level=settings.max_stock_level,
        )
        self.evaluation = EvaluationLoop(
            dispatcher,
            interval_seconds=settings.evaluation_interval_seconds,
            shutdown=self.shutdown,
        )

        if self.consume:
            if self.consumer is None:
                self.consumer = AIOKafkaConsumer(
                    settings.kafka_order_topic,
                    bootstrap_servers=settings.kafka_bootstrap_servers,
                    group_id=settings.kafka_consumer_group,
                    auto_offset_reset="earliest",
                    enable_auto_commit=True,
                )
            self.stream = OrderCommandStream(self.consumer)
            await self.stream.start()
            self.consumption = ConsumptionLoop(
                OrderIngestor(self.store, settings.facility_id),
                self.stream,
                path=require_path(settings.order_command_path),
                shutdown=self.shutdown,
            )

        self._started = True
        logger.info(
            "runtime.started",
            facility_id=settings.facility_id,
            notification_path=self.router.path_id,
            consumer=self.consume,
        )

    async def close(self) -> None:
        """Release everything built so far. One failing step does not skip the rest."""
        if self.stream is not None:
            await self._close_step("order_stream", self.stream.close)
            self.stream = None
        if self.router is not None:
            await self._close_step("router", self.router.close)
            self.router = None
        if self.http_client is not None and self._owned_http_client:
            await self._close_step("http_client", self.http_client.aclose)
            self.http_client = None
        if self.engine is not None and self._owned_engine:
            await self._close_step("engine", self.engine.dispose)
            self.engine = None
        self._started = False
        logger.info("runtime.closed")

    async def _close_step(self, name: str, closer) -> None:
        try:
            await closer()
        except Exception as exc:  # noqa: BLE001
            logger.error("runtime.close_failed", component=name, error=str(exc), error_type=type(exc).__name__)

    # ── Signals ────────────────────────────────────────────────────────

    def request_shutdown(self) -> None:
        if not self.shutdown.is_set():
            logger.info("runtime.shutdown_requested")
            self.shutdown.set()

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown)

    # ── Run ────────────────────────────────────────────────────────────

    async def run(self, *, once: bool = False) -> NotificationOutcome | None:
        """Run one cycle (``once``) or both loops until shutdown. Always closes, even after a failed start."""
        try:
            await self.start()
            if once:
                return await self.evaluation.run_once()

            tasks = [asyncio.create_task(self.evaluation.run(), name="evaluation")]
            if self.consumption is not None:
                tasks.append(asyncio.create_task(self.consumption.run(), name="consumption"))
            try:
                await asyncio.gather(*tasks)
            except Exception:
                self.request_shutdown()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
            return None
        finally:
            await self.close()
