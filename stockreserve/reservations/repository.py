import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from stockreserve.common.custom_exceptions import InvalidState
from stockreserve.schema.full_schema import ReservationStatus, StockReservation, can_transition

_RESERVATION_COLUMNS = (
    StockReservation.id, StockReservation.product_id, StockReservation.warehouse_id,
    StockReservation.quantity, StockReservation.status, StockReservation.order_id,
    StockReservation.cart_session_id, StockReservation.user_id, StockReservation.created_at,
    StockReservation.expires_at, StockReservation.confirmed_at, StockReservation.cancelled_at,
    StockReservation.expired_at,
)

# column on which each terminal state stamps its time
_STAMP_COLUMN = {
    ReservationStatus.CONFIRMED: "confirmed_at",
    ReservationStatus.CANCELLED: "cancelled_at",
    ReservationStatus.EXPIRED: "expired_at",
}


async def insert_reservation(session: AsyncSession, product_id: int, warehouse_id: int, quantity: int,
                             expires_at: datetime, user_id: Optional[str] = None,
                             order_id: Optional[str] = None, cart_session_id: Optional[str] = None) -> StockReservation:
    reservation = StockReservation(
        product_id=product_id,
        warehouse_id=warehouse_id,
        quantity=quantity,
        status=ReservationStatus.ACTIVE.value,
        expires_at=expires_at,
        user_id=user_id,
        order_id=order_id,
        cart_session_id=cart_session_id,
    )
    session.add(reservation)
    await session.flush()
    return reservation


async def get_reservation_row(session: AsyncSession, reservation_id: uuid.UUID) -> Optional[Dict[str, Any]]:
    res = await session.execute(select(*_RESERVATION_COLUMNS).where(StockReservation.id == reservation_id))
    row = res.one_or_none()
    return dict(row._mapping) if row else None


async def transition_status(session: AsyncSession, reservation_id: uuid.UUID, target: ReservationStatus,
                            ts: datetime, expected: ReservationStatus = ReservationStatus.ACTIVE) -> bool:
    """Compare-and-swap on status. True only for the single caller whose UPDATE matched."""
    if not can_transition(expected, target):
        raise InvalidState(f"Illegal reservation transition {expected.value} -> {target.value}",
                           status=expected.value)

    stmt = (
        update(StockReservation)
        .where(StockReservation.id == reservation_id, StockReservation.status == expected.value)
        .values(status=target.value, **{_STAMP_COLUMN[target]: ts})
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def list_reservations(session: AsyncSession, user_id: Optional[str] = None,
                            status: Optional[ReservationStatus] = None, order_id: Optional[str] = None,
                            limit: int = 100) -> List[Dict[str, Any]]:
    stmt = select(*_RESERVATION_COLUMNS)
    if user_id is not None:
        stmt = stmt.where(StockReservation.user_id == user_id)
    if status is not None:
        stmt = stmt.where(StockReservation.status == ReservationStatus(status).value)
    if order_id is not None:
        stmt = stmt.where(StockReservation.order_id == order_id)
    stmt = stmt.order_by(StockReservation.created_at.desc()).limit(limit)
    res = await session.execute(stmt)
    return [dict(r._mapping) for r in res.all()]


async def reservation_ids_for_order(session: AsyncSession, order_id: str) -> List[uuid.UUID]:
    """Every reservation linked to the order, whatever its status."""
    stmt = (select(StockReservation.id)
            .where(StockReservation.order_id == order_id)
            .order_by(StockReservation.created_at))
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def expired_active_ids(session: AsyncSession, ts: datetime, limit: int) -> List[uuid.UUID]:
    """Oldest first so a backlog drains in expiry order."""
    stmt = (select(StockReservation.id)
            .where(StockReservation.status == ReservationStatus.ACTIVE.value,
                   StockReservation.expires_at <= ts)
            .order_by(StockReservation.expires_at)
            .limit(limit))
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def set_order_for_reservations(session: AsyncSession, reservation_ids: Sequence[uuid.UUID], order_id: str,
                                     user_id: str) -> int:
    """Link the caller's still-active reservations to an order. Returns how many were linked."""
    stmt = (
        update(StockReservation)
        .where(StockReservation.id.in_(list(reservation_ids)),
               StockReservation.user_id == user_id,
               StockReservation.status == ReservationStatus.ACTIVE.value)
        .values(order_id=order_id)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount


async def sum_active_quantity(session: AsyncSession, product_id: int, warehouse_id: int) -> int:
    stmt = select(func.coalesce(func.sum(StockReservation.quantity), 0)).where(
        StockReservation.product_id == product_id,
        StockReservation.warehouse_id == warehouse_id,
        StockReservation.status == ReservationStatus.ACTIVE.value,
    )
    res = await session.execute(stmt)
    return int(res.scalar_one())
