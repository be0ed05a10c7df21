"""
Database Models

Tables for the warehouse inventory intelligence backend.

Tables:
  Warehouse reference (1-9):
  1. products                - Product master (SKU, UPC, cost)
  2. locations               - Bin/slot master
  3. inventory               - Live on-hand per product/location
  4. inventory_transactions  - Audit trail of every on-hand change
  5. users                   - Operators and service accounts
  6. audit_logs              - User activity
  7. orders                  - Outbound orders
  8. alerts                  - Operational alerts
  9. tasks                   - Warehouse work items

  Ingestion (10-14):
  10. ingestion_records      - One row per uploaded export (never deleted)
  11. inventory_snapshots    - On-hand facts from WMS exports
  12. transaction_snapshots  - Movement history from WMS exports
  13. adjustment_snapshots   - Manual adjustment history
  14. cycle_count_snapshots  - Cycle count results

  Intelligence (15-17):
  15. discrepancies          - Detected inventory discrepancies
  16. investigations         - Confirmed root causes
  17. action_recommendations - Follow-up work generated from discrepancies
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    text,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


# Alias so Column(UUID(as_uuid=True)) reads like the PostgreSQL type
def UUID(as_uuid=True):
    return GUID()


from sqlalchemy.orm import relationship

from db.session import Base

# ─── 1. Products ────────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sku = Column(String(100), nullable=False, unique=True)
    upc = Column(String(14))
    name = Column(String(255), nullable=False)
    category = Column(String(100))
    unit_cost = Column(Float)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('active', 'inactive', 'discontinued')", name="ck_product_status"),
    )


# ─── 2. Locations ───────────────────────────────────────────────────────────


class Location(Base):
    __tablename__ = "locations"

    location_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(50), nullable=False, unique=True)
    zone = Column(String(50))
    location_type = Column(String(30), nullable=False, default="PICK")
    min_quantity = Column(Integer)
    max_quantity = Column(Integer)
    is_pickable = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# ─── 3. Inventory (live) ────────────────────────────────────────────────────


class InventoryRecord(Base):
    __tablename__ = "inventory"

    inventory_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.product_id"), nullable=False)
    location_id = Column(UUID(as_uuid=True), ForeignKey("locations.location_id"), nullable=False)
    lot_number = Column(String(50))
    quantity_on_hand = Column(Integer, nullable=False, default=0)
    quantity_allocated = Column(Integer, nullable=False, default=0)
    quantity_available = Column(Integer, nullable=False, default=0)
    # Bumped on every write; adjustments update conditionally on it
    version = Column(Integer, nullable=False, default=1)
    last_counted_at = Column(DateTime)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_inventory_product_location", "product_id", "location_id"),
        CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_qty_non_negative"),
    )

    product = relationship("Product")
    location = relationship("Location")


# ─── 4. Inventory Transactions ──────────────────────────────────────────────


class InventoryTransaction(Base):
    __tablename__ = "inventory_transactions"

    transaction_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    inventory_id = Column(UUID(as_uuid=True), ForeignKey("inventory.inventory_id"), nullable=False)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.product_id"), nullable=False)
    location_id = Column(UUID(as_uuid=True), ForeignKey("locations.location_id"), nullable=False)
    transaction_type = Column(String(20), nullable=False)
    quantity = Column(Integer, nullable=False)
    quantity_before = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)
    reason = Column(Text)
    reference_type = Column(String(30))
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_inventory_transactions_inventory", "inventory_id", "created_at"),
        CheckConstraint(
            "transaction_type IN ('ADJUST_IN', 'ADJUST_OUT', 'RECEIVE', 'PICK', 'MOVE')",
            name="ck_inventory_transaction_type",
        ),
    )


# ─── 5. Users ───────────────────────────────────────────────────────────────


class User(Base):
    __tablename__ = "users"

    user_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    username = Column(String(100), nullable=False, unique=True)
    full_name = Column(String(255))
    email = Column(String(255))
    role = Column(String(30), nullable=False, default="OPERATOR")
    is_active = Column(Boolean, nullable=False, default=True)
    is_service_account = Column(Boolean, nullable=False, default=False)
    last_login_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# ─── 6. Audit Logs ──────────────────────────────────────────────────────────


class AuditLog(Base):
    __tablename__ = "audit_logs"

    audit_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    action = Column(String(50), nullable=False)
    entity_type = Column(String(50))
    entity_id = Column(String(100))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_audit_logs_user_time", "user_id", "created_at"),)


# ─── 7. Orders ──────────────────────────────────────────────────────────────


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_number = Column(String(50), nullable=False, unique=True)
    customer_name = Column(String(255))
    status = Column(String(20), nullable=False, default="PENDING")
    priority = Column(Integer, nullable=False, default=5)
    required_date = Column(DateTime)
    shipped_at = Column(DateTime)
    late_reason = Column(Text)
    line_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("priority BETWEEN 1 AND 10", name="ck_order_priority"),
        CheckConstraint(
            "status IN ('PENDING', 'ALLOCATED', 'PICKING', 'PACKED', 'SHIPPED', 'CANCELLED')",
            name="ck_order_status",
        ),
    )


# ─── 8. Alerts ──────────────────────────────────────────────────────────────


class Alert(Base):
    __tablename__ = "alerts"

    alert_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    alert_type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    suggested_action = Column(Text)
    entity_type = Column(String(30))
    entity_id = Column(String(100))
    source = Column(String(30), nullable=False, default="system")
    is_resolved = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    resolved_at = Column(DateTime)

    __table_args__ = (
        Index("ix_alerts_open", "is_resolved", "severity"),
        CheckConstraint("severity IN ('INFO', 'WARNING', 'CRITICAL', 'EMERGENCY')", name="ck_alert_severity"),
    )


# ─── 9. Tasks ───────────────────────────────────────────────────────────────


class Task(Base):
    __tablename__ = "tasks"

    task_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    task_type = Column(String(30), nullable=False)
    priority = Column(Integer, nullable=False, default=5)
    status = Column(String(20), nullable=False, default="PENDING")
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.order_id"))
    location_id = Column(UUID(as_uuid=True), ForeignKey("locations.location_id"))
    notes = Column(Text)
    created_by = Column(String(100))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("priority BETWEEN 1 AND 10", name="ck_task_priority"),
        CheckConstraint(
            "task_type IN ('PICK', 'PUTAWAY', 'REPLENISHMENT', 'CYCLE_COUNT', 'PACK', 'SHIP', 'RECEIVE', 'TRANSFER')",
            name="ck_task_type",
        ),
    )


# ─── 10. Ingestion Records ──────────────────────────────────────────────────


class IngestionRecord(Base):
    __tablename__ = "ingestion_records"

    ingestion_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    filename = Column(String(255), nullable=False)
    file_path = Column(Text)
    data_type = Column(String(50), nullable=False)
    source = Column(String(50), nullable=False, default="manual")
    mapping_type = Column(String(50), nullable=False, default="generic")
    record_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="PROCESSING")
    error_message = Column(Text)
    ingestion_metadata = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime)

    __table_args__ = (
        Index("ix_ingestion_records_created", "created_at"),
        CheckConstraint("status IN ('PROCESSING', 'COMPLETED', 'FAILED')", name="ck_ingestion_status"),
    )


# ─── 11. Inventory Snapshots ────────────────────────────────────────────────


class InventorySnapshot(Base):
    __tablename__ = "inventory_snapshots"

    snapshot_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ingestion_id = Column(UUID(as_uuid=True), ForeignKey("ingestion_records.ingestion_id"), nullable=False)
    sku = Column(String(100), nullable=False)
    location_code = Column(String(50), nullable=False)
    quantity_on_hand = Column(Float, nullable=False)
    quantity_allocated = Column(Float, nullable=False, default=0)
    quantity_available = Column(Float, nullable=False, default=0)
    lot_number = Column(String(50))
    snapshot_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    raw_data = Column(JSON, default=dict)

    __table_args__ = (
        Index("ix_inventory_snapshots_sku_location", "sku", "location_code", "snapshot_date"),
        Index("ix_inventory_snapshots_on_hand", "quantity_on_hand"),
    )


# ─── 12. Transaction Snapshots ──────────────────────────────────────────────


class TransactionSnapshot(Base):
    __tablename__ = "transaction_snapshots"

    snapshot_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ingestion_id = Column(UUID(as_uuid=True), ForeignKey("ingestion_records.ingestion_id"), nullable=False)
    external_transaction_id = Column(String(100))
    transaction_type = Column(String(30), nullable=False)
    sku = Column(String(100), nullable=False)
    from_location = Column(String(50))
    to_location = Column(String(50))
    quantity = Column(Float, nullable=False)
    user_id = Column(String(100))
    transaction_date = Column(DateTime, nullable=False)
    raw_data = Column(JSON, default=dict)

    __table_args__ = (Index("ix_transaction_snapshots_sku_date", "sku", "transaction_date"),)


# ─── 13. Adjustment Snapshots ───────────────────────────────────────────────


class AdjustmentSnapshot(Base):
    __tablename__ = "adjustment_snapshots"

    snapshot_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ingestion_id = Column(UUID(as_uuid=True), ForeignKey("ingestion_records.ingestion_id"), nullable=False)
    sku = Column(String(100), nullable=False)
    location_code = Column(String(50), nullable=False)
    adjustment_qty = Column(Float, nullable=False)
    reason = Column(String(255), nullable=False)
    reason_code = Column(String(30))
    user_id = Column(String(100))
    adjustment_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    raw_data = Column(JSON, default=dict)

    __table_args__ = (
        Index("ix_adjustment_snapshots_sku_location_date", "sku", "location_code", "adjustment_date"),
    )


# ─── 14. Cycle Count Snapshots ──────────────────────────────────────────────


class CycleCountSnapshot(Base):
    __tablename__ = "cycle_count_snapshots"

    snapshot_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ingestion_id = Column(UUID(as_uuid=True), ForeignKey("ingestion_records.ingestion_id"), nullable=False)
    sku = Column(String(100), nullable=False)
    location_code = Column(String(50), nullable=False)
    system_qty = Column(Float, nullable=False)
    counted_qty = Column(Float, nullable=False)
    variance = Column(Float, nullable=False)  # counted - system
    variance_percent = Column(Float, nullable=False)  # 0 when system_qty is 0
    counter_id = Column(String(100))
    count_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    raw_data = Column(JSON, default=dict)

    __table_args__ = (
        Index("ix_cycle_count_snapshots_sku_location_date", "sku", "location_code", "count_date"),
    )


# ─── 15. Discrepancies ──────────────────────────────────────────────────────


class Discrepancy(Base):
    __tablename__ = "discrepancies"

    discrepancy_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    discrepancy_type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False)
    sku = Column(String(100), nullable=False)
    location_code = Column(String(50), nullable=False)
    expected_qty = Column(Float)
    actual_qty = Column(Float)
    variance = Column(Float, nullable=False)
    variance_percent = Column(Float)
    description = Column(Text, nullable=False)
    evidence = Column(JSON, default=dict)
    status = Column(String(20), nullable=False, default="OPEN")
    root_cause = Column(Text)
    root_cause_category = Column(String(30))
    detected_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    resolved_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        # One OPEN discrepancy per natural key; closed ones accumulate freely
        Index(
            "uq_discrepancies_open_key",
            "discrepancy_type",
            "sku",
            "location_code",
            unique=True,
            postgresql_where=text("status = 'OPEN'"),
            sqlite_where=text("status = 'OPEN'"),
        ),
        Index("ix_discrepancies_location_status", "location_code", "status"),
        CheckConstraint("severity IN ('low', 'medium', 'high', 'critical')", name="ck_discrepancy_severity"),
        CheckConstraint("status IN ('OPEN', 'INVESTIGATED', 'RESOLVED')", name="ck_discrepancy_status"),
    )

    investigations = relationship(
        "Investigation",
        back_populates="discrepancy",
        order_by="Investigation.created_at.desc()",
    )


# ─── 16. Investigations ─────────────────────────────────────────────────────


class Investigation(Base):
    __tablename__ = "investigations"

    investigation_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    discrepancy_id = Column(UUID(as_uuid=True), ForeignKey("discrepancies.discrepancy_id"), nullable=False)
    root_cause = Column(Text, nullable=False)
    category = Column(String(30), nullable=False)
    notes = Column(Text)
    assigned_to = Column(String(100))
    status = Column(String(20), nullable=False, default="CONFIRMED")
    confirmed_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_investigations_discrepancy", "discrepancy_id"),
        CheckConstraint("status IN ('CONFIRMED')", name="ck_investigation_status"),
    )

    discrepancy = relationship("Discrepancy", back_populates="investigations")


# ─── 17. Action Recommendations ─────────────────────────────────────────────


class ActionRecommendation(Base):
    __tablename__ = "action_recommendations"

    action_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    action_type = Column(String(50), nullable=False)
    priority = Column(Integer, nullable=False)
    discrepancy_id = Column(UUID(as_uuid=True), ForeignKey("discrepancies.discrepancy_id"))
    sku = Column(String(100))
    location_code = Column(String(50))
    description = Column(Text, nullable=False)
    instructions = Column(Text)
    estimated_impact = Column(Float, default=0.0)
    status = Column(String(20), nullable=False, default="PENDING")
    notes = Column(Text)
    completed_by = Column(String(100))
    completed_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("discrepancy_id", "action_type", name="uq_action_per_discrepancy"),
        Index("ix_action_recommendations_queue", "action_type", "status", "priority", "created_at"),
        CheckConstraint(
            "status IN ('PENDING', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED')",
            name="ck_action_status",
        ),
    )
