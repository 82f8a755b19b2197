"""
Tests for the monitor runtime wiring (MOCK path, injected engine and consumer).
"""

import asyncio
import json
from types import SimpleNamespace

import pytest
from aiokafka.structs import TopicPartition

from core.types import DeliveryPath
from inventory.stock import update_stock_level
from workers.runtime import MonitorRuntime


class OneShotConsumer:
    """Delivers one batch, then asks the runtime to shut down."""

    def __init__(self, commands):
        self.batch = {
            TopicPartition("order-commands", 0): [
                SimpleNamespace(value=json.dumps(command).encode("utf-8"), offset=i) for i, command in enumerate(commands)
            ]
        }
        self.runtime = None
        self.started = False
        self.stopped = False

    def subscription(self):
        return {"order-commands"}

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True

    async def getmany(self, timeout_ms=0, max_records=None):
        if self.batch is None:
            self.runtime.request_shutdown()
            await asyncio.sleep(0)
            return {}
        batch, self.batch = self.batch, None
        return batch


@pytest.mark.asyncio
async def test_single_cycle_on_mock_path(settings, test_engine, store):
    await update_stock_level(store, 10, 20)
    runtime = MonitorRuntime(settings, consume=False, engine=test_engine)

    outcome = await runtime.run(once=True)

    assert outcome.success is True
    assert outcome.path is None
    assert outcome.alert_id is not None
    assert outcome.stock_status == "URGENT"
    assert outcome.recommended_quantity == 490
    # injected engine is left open for the caller
    assert runtime.engine is test_engine
    assert len(await store.list_unacknowledged_alerts()) == 1


@pytest.mark.asyncio
async def test_single_cycle_without_stock_row(settings, test_engine):
    runtime = MonitorRuntime(settings, consume=False, engine=test_engine)

    assert await runtime.run(once=True) is None


@pytest.mark.asyncio
async def test_loops_run_until_shutdown(settings, test_engine, store, order_command):
    await update_stock_level(store, 100, 20)
    consumer = OneShotConsumer([order_command])
    runtime = MonitorRuntime(settings, consume=True, engine=test_engine, consumer=consumer)
    consumer.runtime = runtime

    await asyncio.wait_for(runtime.run(), timeout=10)

    assert consumer.started and consumer.stopped
    assert runtime.shutdown.is_set()
    orders = await store.query_orders_by_path(DeliveryPath.SERVERLESS)
    assert [o.command_id for o in orders] == ["CMD-0001"]


@pytest.mark.asyncio
async def test_request_shutdown_is_idempotent(settings):
    runtime = MonitorRuntime(settings, consume=False)
    runtime.request_shutdown()
    runtime.request_shutdown()
    assert runtime.shutdown.is_set()


class UnreachableProducer:
    """A producer whose broker refuses the connection on start."""

    def __init__(self, stop_error=None):
        self.stop_error = stop_error
        self.stopped = False

    async def start(self):
        raise ConnectionRefusedError("event hub refused the connection")

    async def stop(self):
        self.stopped = True
        if self.stop_error is not None:
            raise self.stop_error


@pytest.mark.asyncio
async def test_failed_start_still_disposes_owned_engine(settings):
    settings.notification_path = "SERVERLESS"
    producer = UnreachableProducer()
    runtime = MonitorRuntime(settings, consume=False, producer=producer)

    with pytest.raises(ConnectionRefusedError):
        await runtime.run(once=True)

    assert producer.stopped is True
    assert runtime.router is None
    assert runtime.engine is None


@pytest.mark.asyncio
async def test_close_error_does_not_mask_start_error(settings):
    settings.notification_path = "SERVERLESS"
    producer = UnreachableProducer(stop_error=RuntimeError("producer was never started"))
    runtime = MonitorRuntime(settings, consume=False, producer=producer)

    with pytest.raises(ConnectionRefusedError):
        await runtime.run(once=True)

    assert runtime.engine is None
