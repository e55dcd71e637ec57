from __future__ import annotations
from datetime import datetime
from typing import Optional, List, Any
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import (
    String, BigInteger, Integer, DateTime, JSON, UniqueConstraint, Float, Boolean, Index
)
from .database import Base
from .utils.clock import utcnow

# ----------------------------
# Ledger: reputation counters
# ----------------------------
class UserReputation(Base):
    __tablename__ = "user_reputation"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

# ----------------------------
# Ledger: applied reputation deltas (append-only receipts)
# ----------------------------
class ReputationEvent(Base):
    __tablename__ = "reputation_events"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    receipt_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    requested_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    applied_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    resulting_score: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(64))   # event type that produced the delta
    # "<order_id>:<event>" for deltas tied to an order; one receipt per key
    dedup_key: Mapped[Optional[str]] = mapped_column(String(200), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

# ----------------------------
# Ledger: order records
# ----------------------------
class LedgerOrder(Base):
    __tablename__ = "ledger_orders"

    order_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    order_value: Mapped[float] = mapped_column(Float, nullable=False)
    product_category: Mapped[str] = mapped_column(String(128), nullable=False)
    destination: Mapped[str] = mapped_column(String(256), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="CREATED")
    delivery_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_reason: Mapped[str] = mapped_column(String(20), nullable=False, default="NONE")
    return_reason: Mapped[Optional[str]] = mapped_column(String(512))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    returned_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

# ----------------------------
# Logistics partners
# ----------------------------
class LogisticsPartner(Base):
    __tablename__ = "logistics_partners"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    min_reputation: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_reputation: Mapped[Optional[int]] = mapped_column(Integer)        # None = no upper limit
    service_areas: Mapped[List[str]] = mapped_column(JSON, default=list)  # [] = serves all areas
    special_capabilities: Mapped[List[str]] = mapped_column(JSON, default=list)
    contact: Mapped[dict] = mapped_column(JSON, default=dict)
    operational_status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", index=True)
    daily_order_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    max_order_value: Mapped[float] = mapped_column(Float, nullable=False, default=10000.0)
    min_order_value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    preferred_categories: Mapped[List[str]] = mapped_column(JSON, default=list)
    # performance snapshot, refreshed from analytics
    success_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    avg_delivery_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    customer_rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_orders_handled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

# ----------------------------
# In-flight capacity counters
# ----------------------------
class PartnerCapacity(Base):
    __tablename__ = "partner_capacity"

    partner_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    current_orders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

class CapacityEvent(Base):
    __tablename__ = "capacity_events"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    partner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    allocation_id: Mapped[str] = mapped_column(String(160), nullable=False)
    direction: Mapped[str] = mapped_column(String(8), nullable=False)   # reserve|release
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("allocation_id", "direction", name="uq_capacity_event"),
    )

# ----------------------------
# Order allocations
# ----------------------------
class Allocation(Base):
    __tablename__ = "order_allocations"

    id: Mapped[str] = mapped_column(String(160), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    partner_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    partner_name: Mapped[Optional[str]] = mapped_column(String(128))
    order_value: Mapped[Optional[float]] = mapped_column(Float)
    product_category: Mapped[Optional[str]] = mapped_column(String(128))
    destination: Mapped[Optional[str]] = mapped_column(String(256))
    method: Mapped[str] = mapped_column(String(20), nullable=False)     # oracle-ranked|random|rule-fallback
    confidence: Mapped[Optional[float]] = mapped_column(Float)
    reasoning: Mapped[List[str]] = mapped_column(JSON, default=list)
    user_reputation: Mapped[Optional[int]] = mapped_column(Integer)
    delivery_success_probability: Mapped[Optional[float]] = mapped_column(Float)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="allocated", index=True)
    allocated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    estimated_delivery_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    actual_delivery_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(64))
    attempt_count: Mapped[Optional[int]] = mapped_column(Integer)
    return_reason: Mapped[Optional[str]] = mapped_column(String(512))
    customer_rating: Mapped[Optional[float]] = mapped_column(Float)
    partner_rating: Mapped[Optional[float]] = mapped_column(Float)
    comments: Mapped[List[str]] = mapped_column(JSON, default=list)

Index("ix_order_allocations_partner_allocated", Allocation.partner_id, Allocation.allocated_at)

# ----------------------------
# Evidence log (debug/audit)
# ----------------------------
class EvidenceLog(Base):
    __tablename__ = "evidence_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[str] = mapped_column(String(128), index=True)
    key: Mapped[str] = mapped_column(String(64))
    value: Mapped[Any] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

# tables that live in the ledger store when LEDGER_DATABASE_URL splits it out
LEDGER_TABLES = frozenset({
    UserReputation.__tablename__,
    ReputationEvent.__tablename__,
    LedgerOrder.__tablename__,
})
