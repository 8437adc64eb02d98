import enum
import uuid
from datetime import datetime
from typing import Dict, FrozenSet, Optional
from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, Integer, Text, UniqueConstraint, Uuid
from uuid6 import uuid7
from sqlmodel import Column, SQLModel, Field, String
from stockreserve.common.utils import now


class Warehouse(SQLModel, table=True):
    __tablename__ = "warehouses"

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(sa_column=Column(String(32), unique=True, nullable=False, index=True))
    name: str = Field(sa_column=Column(String(128), nullable=False))
    is_default: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

# -----------------------------------------------------------------------------------------------------------------------

class Inventory(SQLModel, table=True):
    """One ledger row per (product, warehouse). available = on_hand - reserved."""
    __tablename__ = "inventory"

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(sa_column=Column(Integer, nullable=False, index=True))
    warehouse_id: int = Field(sa_column=Column(Integer, nullable=False, index=True))
    quantity_on_hand: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    quantity_reserved: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    version: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))

    __table_args__ = (
        UniqueConstraint("product_id", "warehouse_id", name="uq_inventory_product_warehouse"),
        CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_on_hand_non_negative"),
        CheckConstraint("quantity_reserved >= 0", name="ck_inventory_reserved_non_negative"),
        CheckConstraint("quantity_reserved <= quantity_on_hand", name="ck_inventory_reserved_within_on_hand"),
    )

# -----------------------------------------------------------------------------------------------------------------------

class ReservationStatus(str, enum.Enum):
    ACTIVE = "active"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# the only legal moves; every other pair (including terminal -> anything) is rejected
RESERVATION_TRANSITIONS: Dict[ReservationStatus, FrozenSet[ReservationStatus]] = {
    ReservationStatus.ACTIVE: frozenset({ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED, ReservationStatus.EXPIRED}),
    ReservationStatus.CONFIRMED: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.EXPIRED: frozenset(),
}

TERMINAL_RESERVATION_STATUSES = frozenset(s for s, nxt in RESERVATION_TRANSITIONS.items() if not nxt)


def can_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    return target in RESERVATION_TRANSITIONS[ReservationStatus(current)]


class StockReservation(SQLModel, table=True):
    __tablename__ = "stock_reservations"

    id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(Uuid, primary_key=True))
    product_id: int = Field(sa_column=Column(Integer, nullable=False, index=True))
    warehouse_id: int = Field(sa_column=Column(Integer, nullable=False, index=True))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    status: str = Field(default=ReservationStatus.ACTIVE.value, sa_column=Column(String(16), nullable=False, index=True))
    order_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True, index=True))
    cart_session_id: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    user_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True, index=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False, index=True))
    confirmed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    cancelled_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    expired_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_reservations_quantity_positive"),
    )

# -----------------------------------------------------------------------------------------------------------------------

class MovementType(str, enum.Enum):
    RESERVATION = "reservation"
    CONFIRMATION = "confirmation"
    RELEASE = "release"
    ADJUSTMENT = "adjustment"


class MovementStatus(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class StockMovement(SQLModel, table=True):
    """Append-only audit trail, rows are never updated or deleted."""
    __tablename__ = "stock_movements"

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(sa_column=Column(Integer, nullable=False, index=True))
    warehouse_id: int = Field(sa_column=Column(Integer, nullable=False, index=True))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))   # signed
    movement_type: str = Field(sa_column=Column(String(16), nullable=False, index=True))
    reason: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    status: str = Field(default=MovementStatus.COMPLETED.value, sa_column=Column(String(16), nullable=False))
    reservation_id: Optional[uuid.UUID] = Field(default=None, sa_column=Column(Uuid, nullable=True, index=True))
    order_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    performed_by: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, index=True))

# -----------------------------------------------------------------------------------------------------------------------

class DistributedLock(SQLModel, table=True):
    __tablename__ = "distributed_locks"

    id: Optional[int] = Field(default=None, primary_key=True)
    lock_key: str = Field(sa_column=Column(String(255), unique=True, nullable=False))
    locked_by: str = Field(sa_column=Column(String(128), nullable=False))
    acquired_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False, index=True))

# -----------------------------------------------------------------------------------------------------------------------

class PaymentEventStatus(str, enum.Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"


class PaymentWebhookEvent(SQLModel, table=True):
    __tablename__ = "payment_webhook_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    provider: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    provider_event_id: str = Field(sa_column=Column(String(128), nullable=False, index=True))
    order_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True, index=True))
    action: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    status: str = Field(default=PaymentEventStatus.RECEIVED.value, sa_column=Column(String(16), nullable=False))
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    processed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True, index=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

    __table_args__ = (
        UniqueConstraint("provider", "provider_event_id", name="uq_webhook_provider_event"),
    )
