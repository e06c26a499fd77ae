"""SQLAlchemy models for the anesthesia stock API service."""

import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Role(str, enum.Enum):
    ANESTHETIST = "anesthetist"
    PHARMACIST = "pharmacist"


class TxType(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"


class TxStatus(str, enum.Enum):
    PENDING = "PENDING"
    VALIDATED = "VALIDATED"
    REJECTED = "REJECTED"


class TxCategory(str, enum.Enum):
    NORMAL = "NORMAL"
    INCIDENT = "INCIDENT"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    username = Column(String(64), nullable=False, unique=True)
    full_name = Column(String(128))
    password_hash = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False, default=Role.ANESTHETIST.value)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())


class Medication(Base):
    """Catalog entry; ``stock`` mirrors the validated ledger."""

    __tablename__ = "medications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(128), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    is_narcotic = Column(Boolean, nullable=False, default=False)
    expiry = Column(Date)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (CheckConstraint("stock >= 0", name="medications_stock_non_negative"),)


class Transaction(Base):
    """One ledger line. Only ``status`` changes after insertion."""

    __tablename__ = "transactions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    med_id = Column(Uuid, ForeignKey("medications.id"), nullable=False)
    # name as it was when the event happened
    med_name = Column(String(128), nullable=False)
    type = Column(String(3), nullable=False)
    quantity = Column(Integer, nullable=False)
    date = Column(DateTime, nullable=False, server_default=func.now())
    status = Column(String(16), nullable=False, default=TxStatus.PENDING.value)
    category = Column(String(16), nullable=False, default=TxCategory.NORMAL.value)
    batch_id = Column(Uuid)
    details = Column(JSON, nullable=False, default=dict)
    created_by = Column(Uuid, ForeignKey("users.id"))

    __table_args__ = (
        CheckConstraint("quantity > 0", name="transactions_quantity_positive"),
        Index("transactions_batch_idx", batch_id),
        Index("transactions_med_date_idx", med_id, date),
        Index("transactions_status_idx", status),
    )


class InventoryAudit(Base):
    __tablename__ = "inventory_audits"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"))
    status = Column(String(16), nullable=False, default="COMPLETED")
    total_items = Column(Integer, nullable=False, default=0)
    discrepancy_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    items = relationship(
        "InventoryAuditItem",
        back_populates="audit",
        cascade="all, delete-orphan",
        order_by="InventoryAuditItem.med_name",
    )


class InventoryAuditItem(Base):
    __tablename__ = "inventory_audit_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    audit_id = Column(Uuid, ForeignKey("inventory_audits.id", ondelete="CASCADE"), nullable=False)
    med_id = Column(Uuid, nullable=False)
    med_name = Column(String(128), nullable=False)
    is_narcotic = Column(Boolean, nullable=False, default=False)
    theoretical_stock = Column(Integer, nullable=False)
    physical_stock = Column(Integer, nullable=False)
    gap = Column(Integer, nullable=False)
    comment = Column(Text, nullable=False, default="")
    expected_empty_vials = Column(Integer)
    physical_empty_vials = Column(Integer)

    audit = relationship("InventoryAudit", back_populates="items")


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String(64), primary_key=True)
    value = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=False, server_default=func.now())


class ActivityLog(Base):
    __tablename__ = "activity_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    entity = Column(String(32), nullable=False)
    entity_id = Column(String(64), nullable=False)
    action = Column(String(32), nullable=False)
    payload_json = Column(JSON, nullable=False, default=dict)
    user_id = Column(Uuid)
    ts = Column(DateTime, nullable=False, server_default=func.now())
