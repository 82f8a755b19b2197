"""
Stockguard Database Models

4 tables for single-facility stock monitoring and path comparison.

Tables:
  1. stock_levels   - Current count / consumption / days of supply per product
  2. stock_alerts   - Threshold breach history
  3. supply_orders  - Orders received from either delivery path (path-tagged)
  4. audit_events   - Append-only event log used for SOA vs serverless comparison

The path column on supply_orders and audit_events is checked twice:
once by the ProvenanceGuard before any I/O, and again by the CHECK
constraints below.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from core.types import utcnow
from db.session import Base

PATH_VALUES = "('SOA', 'SERVERLESS')"


# ─── 1. Stock Levels ────────────────────────────────────────────────────────


class StockLevel(Base):
    __tablename__ = "stock_levels"

    stock_id = Column(Integer, primary_key=True, autoincrement=True)
    facility_id = Column(String(50), nullable=False)
    product_code = Column(String(100), nullable=False)
    current_stock_units = Column(Integer, nullable=False)
    daily_consumption_units = Column(Float, nullable=False)
    days_of_supply = Column(Float, nullable=False)
    reorder_threshold = Column(Float, nullable=False, default=2.0)
    max_stock_level = Column(Integer, nullable=False, default=500)
    last_updated = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("facility_id", "product_code", name="uq_stock_facility_product"),
        CheckConstraint("current_stock_units >= 0", name="ck_stock_units_non_negative"),
        CheckConstraint("daily_consumption_units > 0", name="ck_stock_consumption_positive"),
        CheckConstraint("days_of_supply >= 0", name="ck_stock_days_non_negative"),
    )


# ─── 2. Stock Alerts ────────────────────────────────────────────────────────


class StockAlert(Base):
    __tablename__ = "stock_alerts"

    alert_id = Column(Integer, primary_key=True, autoincrement=True)
    facility_id = Column(String(50), nullable=False)
    product_code = Column(String(100), nullable=False)
    alert_type = Column(String(30), nullable=False)
    severity = Column(String(20), nullable=False)
    current_stock = Column(Integer, nullable=False)
    daily_consumption = Column(Float, nullable=False)
    days_of_supply = Column(Float, nullable=False)
    threshold = Column(Float, nullable=False)
    acknowledged = Column(Boolean, nullable=False, default=False)
    acknowledged_at = Column(DateTime(timezone=True))
    resolved_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_stock_alerts_created", "created_at"),
        Index("ix_stock_alerts_acknowledged", "acknowledged"),
        CheckConstraint(
            "alert_type IN ('OUT_OF_STOCK', 'CRITICAL_STOCK', 'LOW_STOCK', 'SUFFICIENT_STOCK')",
            name="ck_stock_alert_type",
        ),
        CheckConstraint(
            "severity IN ('CRITICAL', 'URGENT', 'HIGH', 'NORMAL')",
            name="ck_stock_alert_severity",
        ),
        CheckConstraint("current_stock >= 0", name="ck_stock_alert_units"),
        CheckConstraint("days_of_supply >= 0", name="ck_stock_alert_days"),
    )


# ─── 3. Supply Orders ───────────────────────────────────────────────────────


class SupplyOrder(Base):
    __tablename__ = "supply_orders"

    order_id = Column(String(100), primary_key=True)
    command_id = Column(String(100))  # idempotency key; NULL for SOA response orders
    facility_id = Column(String(50), nullable=False)
    product_code = Column(String(100), nullable=False)
    order_quantity = Column(Integer, nullable=False)
    priority = Column(String(20), nullable=False)
    order_status = Column(String(20), nullable=False, default="PENDING")
    estimated_delivery_date = Column(DateTime(timezone=True), nullable=False)
    actual_delivery_date = Column(DateTime(timezone=True))
    warehouse_id = Column(String(50), nullable=False, default="CENTRAL-WAREHOUSE")
    notes = Column(Text)
    path = Column(String(20), nullable=False)
    received_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("command_id", name="uq_supply_orders_command_id"),
        Index("ix_supply_orders_path", "path"),
        Index("ix_supply_orders_created", "created_at"),
        CheckConstraint("order_quantity > 0", name="ck_supply_order_quantity"),
        CheckConstraint("priority IN ('URGENT', 'HIGH', 'NORMAL')", name="ck_supply_order_priority"),
        CheckConstraint(
            "order_status IN ('PENDING', 'RECEIVED', 'DELIVERED')",
            name="ck_supply_order_status",
        ),
        CheckConstraint(f"path IN {PATH_VALUES}", name="ck_supply_order_path"),
    )


# ─── 4. Audit Events ────────────────────────────────────────────────────────


class AuditLogEntry(Base):
    __tablename__ = "audit_events"

    log_id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(50), nullable=False)
    direction = Column(String(20), nullable=False)
    path = Column(String(20), nullable=False)
    payload = Column(JSON)
    status = Column(String(20), nullable=False)
    error_message = Column(Text)
    latency_ms = Column(Integer)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_audit_events_timestamp", "timestamp"),
        Index("ix_audit_events_path", "path"),
        Index("ix_audit_events_type", "event_type"),
        CheckConstraint(
            "event_type IN ('STOCK_UPDATE_SENT', 'EVENT_PUBLISHED', 'ORDER_RECEIVED')",
            name="ck_audit_event_type",
        ),
        CheckConstraint("direction IN ('OUTGOING', 'INCOMING')", name="ck_audit_direction"),
        CheckConstraint(f"path IN {PATH_VALUES}", name="ck_audit_path"),
        CheckConstraint("status IN ('SUCCESS', 'FAILURE')", name="ck_audit_status"),
        CheckConstraint("latency_ms IS NULL OR latency_ms >= 0", name="ck_audit_latency"),
    )
