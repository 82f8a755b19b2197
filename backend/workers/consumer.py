"""
Order consumption loop.

Feeds every message from the order-command stream to the OrderIngestor.
Each message is handled on its own: a duplicate, malformed or failing
command is logged and the loop moves on to the next one.
"""

import asyncio
from dataclasses import asdict, dataclass

import structlog

from core.errors import DuplicateCommandError, DuplicateOrderError, OrderValidationError
from core.types import DeliveryPath
from integrations.event_adapter import OrderCommandStream, StreamMessage
from supply_chain.ordering import OrderIngestor

logger = structlog.get_logger()


@dataclass
class ConsumptionStats:
    received: int = 0
    processed: int = 0
    skipped: int = 0
    duplicates: int = 0
    conflicts: int = 0
    invalid: int = 0
    failed: int = 0


class ConsumptionLoop:
    def __init__(
        self,
        ingestor: OrderIngestor,
        stream: OrderCommandStream,
        *,
        path: DeliveryPath,
        shutdown: asyncio.Event,
    ):
        self.ingestor = ingestor
        self.stream = stream
        self.path = path
        self.shutdown = shutdown
        self.stats = ConsumptionStats()

    async def handle(self, message: StreamMessage) -> None:
        self.stats.received += 1
        log = logger.bind(partition=message.partition, offset=message.offset)
        try:
            result = await self.ingestor.ingest(message.value, self.path)
        except DuplicateCommandError as exc:
            self.stats.duplicates += 1
            log.warning("consumer.duplicate_command", command_id=exc.command_id, order_id=exc.order_id)
        except DuplicateOrderError as exc:
            self.stats.conflicts += 1
            log.error("consumer.order_id_conflict", order_id=exc.order_id, error=exc.detail)
        except OrderValidationError as exc:
            self.stats.invalid += 1
            log.warning("consumer.invalid_command", error=str(exc))
        except Exception as exc:  # noqa: BLE001
            self.stats.failed += 1
            log.error("consumer.command_failed", error=str(exc), error_type=type(exc).__name__)
        else:
            if result.processed:
                self.stats.processed += 1
            else:
                self.stats.skipped += 1

    async def run(self) -> ConsumptionStats:
        logger.info("consumer.loop_started", path=self.path.value)
        async for message in self.stream.messages(self.shutdown):
            await self.handle(message)
        logger.info("consumer.loop_stopped", **asdict(self.stats))
        return self.stats
