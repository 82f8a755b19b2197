"""
Storage collaborator used by the evaluation and ingestion loops.

Each operation runs in its own short session and commits before
returning. Conflicting writes are serialized by the database; the only
concurrency guarantee this layer relies on is the unique constraint on
supply_orders.command_id. Nothing here takes an in-process lock.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from audit.provenance import ProvenanceGuard
from core.errors import DuplicateCommandError, DuplicateOrderError
from core.types import AlertEvent, AuditEvent, AuditEventType, OrderRecord, utcnow
from db.models import AuditLogEntry, StockAlert, StockLevel, SupplyOrder

logger = structlog.get_logger()

_UNIQUE_MARKERS = ("unique", "duplicate")


def _is_unique_violation(exc: IntegrityError) -> bool:
    text = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in text for marker in _UNIQUE_MARKERS)


def _names_command_id(exc: IntegrityError) -> bool:
    # SQLite names the column, PostgreSQL names the constraint.
    text = str(exc.orig if exc.orig is not None else exc).lower()
    return "uq_supply_orders_command_id" in text or "command_id" in text


class SupplyStore:
    """Async repository over the four stockguard tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        facility_id: str,
        product_code: str,
        guard: ProvenanceGuard | None = None,
    ):
        self.session_factory = session_factory
        self.facility_id = facility_id
        self.product_code = product_code
        self.guard = guard or ProvenanceGuard()

    # ── Stock ──────────────────────────────────────────────────────────

    async def get_current_stock(self, product_code: str | None = None) -> StockLevel | None:
        product_code = product_code or self.product_code
        async with self.session_factory() as db:
            result = await db.execute(
                select(StockLevel).where(
                    StockLevel.facility_id == self.facility_id,
                    StockLevel.product_code == product_code,
                )
            )
            return result.scalar_one_or_none()

    async def upsert_stock(
        self,
        *,
        current_stock_units: int,
        daily_consumption_units: float,
        days_of_supply: float,
        reorder_threshold: float = 2.0,
        max_stock_level: int | None = None,
        product_code: str | None = None,
    ) -> StockLevel:
        product_code = product_code or self.product_code
        async with self.session_factory() as db:
            result = await db.execute(
                select(StockLevel).where(
                    StockLevel.facility_id == self.facility_id,
                    StockLevel.product_code == product_code,
                )
            )
            stock = result.scalar_one_or_none()
            if stock is None:
                stock = StockLevel(
                    facility_id=self.facility_id,
                    product_code=product_code,
                    max_stock_level=max_stock_level or 500,
                )
                db.add(stock)
            elif max_stock_level is not None:
                stock.max_stock_level = max_stock_level

            stock.current_stock_units = current_stock_units
            stock.daily_consumption_units = daily_consumption_units
            stock.days_of_supply = days_of_supply
            stock.reorder_threshold = reorder_threshold
            stock.last_updated = utcnow()
            await db.commit()
            return stock

    # ── Alerts ─────────────────────────────────────────────────────────

    async def insert_alert(self, alert: AlertEvent) -> StockAlert:
        async with self.session_factory() as db:
            row = StockAlert(
                facility_id=alert.facility_id,
                product_code=alert.product_code,
                alert_type=alert.kind.value,
                severity=alert.severity.value,
                current_stock=alert.count_units,
                daily_consumption=alert.consumption_rate,
                days_of_supply=alert.days_of_supply,
                threshold=alert.threshold,
                created_at=alert.created_at,
            )
            db.add(row)
            await db.commit()
            logger.info(
                "store.alert_inserted",
                alert_id=row.alert_id,
                alert_type=row.alert_type,
                severity=row.severity,
            )
            return row

    async def list_unacknowledged_alerts(self, limit: int = 50) -> list[StockAlert]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(StockAlert)
                .where(StockAlert.acknowledged.is_(False))
                .order_by(StockAlert.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # ── Orders (path-tagged) ───────────────────────────────────────────

    async def insert_order(self, record: OrderRecord, path: Any) -> SupplyOrder:
        """Insert an order tagged with ``path``. Fails before I/O on a bad tag."""
        path = self.guard.check(path)

        async with self.session_factory() as db:
            row = SupplyOrder(
                order_id=record.order_id,
                command_id=record.command_id,
                facility_id=record.facility_id,
                product_code=record.product_code,
                order_quantity=record.quantity,
                priority=record.priority.value,
                order_status=record.status.value,
                estimated_delivery_date=record.estimated_delivery_date,
                warehouse_id=record.warehouse_id,
                notes=record.notes,
                path=path.value,
                received_at=record.received_at,
            )
            db.add(row)
            try:
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                if not _is_unique_violation(exc):
                    raise
                detail = str(exc.orig if exc.orig is not None else exc)
                logger.warning(
                    "store.order_duplicate",
                    order_id=record.order_id,
                    command_id=record.command_id,
                    path=path.value,
                    error=detail,
                )
                if record.command_id is not None and _names_command_id(exc):
                    raise DuplicateCommandError(record.command_id, record.order_id, detail) from exc
                raise DuplicateOrderError(record.order_id, detail) from exc

            logger.info(
                "store.order_inserted",
                order_id=row.order_id,
                path=path.value,
                priority=row.priority,
            )
            return row

    async def query_orders_by_path(
        self,
        path: Any,
        limit: int | None = 100,
        *,
        since: datetime | None = None,
    ) -> list[SupplyOrder]:
        path = self.guard.check(path)
        stmt = select(SupplyOrder).where(SupplyOrder.path == path.value)
        if since is not None:
            stmt = stmt.where(SupplyOrder.received_at >= since)
        stmt = stmt.order_by(SupplyOrder.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def count_orders_by_command(self, command_id: str) -> int:
        async with self.session_factory() as db:
            result = await db.execute(select(SupplyOrder.order_id).where(SupplyOrder.command_id == command_id))
            return len(result.all())

    # ── Audit log (path-tagged, append-only) ───────────────────────────

    async def append_audit_event(self, event: AuditEvent, path: Any) -> AuditLogEntry:
        """Append an audit row tagged with ``path``. Fails before I/O on a bad tag."""
        path = self.guard.check(path)

        async with self.session_factory() as db:
            row = AuditLogEntry(
                event_type=event.event_type.value,
                direction=event.direction.value,
                path=path.value,
                payload=event.payload,
                status=event.status.value,
                latency_ms=event.latency_ms,
                error_message=event.error_message,
                timestamp=event.timestamp,
            )
            db.add(row)
            await db.commit()
            logger.debug(
                "store.audit_appended",
                event_type=row.event_type,
                path=path.value,
                status=row.status,
                latency_ms=row.latency_ms,
            )
            return row

    async def query_audit_by_path(
        self,
        path: Any,
        *,
        event_type: AuditEventType | None = None,
        since: datetime | None = None,
        limit: int | None = 100,
    ) -> list[AuditLogEntry]:
        path = self.guard.check(path)
        stmt = select(AuditLogEntry).where(AuditLogEntry.path == path.value)
        if event_type is not None:
            stmt = stmt.where(AuditLogEntry.event_type == event_type.value)
        if since is not None:
            stmt = stmt.where(AuditLogEntry.timestamp >= since)
        stmt = stmt.order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.log_id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

