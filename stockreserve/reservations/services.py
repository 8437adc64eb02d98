import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from stockreserve.common.custom_exceptions import InvalidDuration, InvalidQuantity, InvalidState, NotFound, StockError
from stockreserve.common.utils import expiry_from_now, now
from stockreserve.config.settings import config_settings
from stockreserve.inventory.constants import NO_WAREHOUSE_REASON
from stockreserve.inventory.repository import (confirm_deduction, get_ledger_row, release_reservation_quantity,
                                               try_deduct)
from stockreserve.metrics.custom_instrumentator import EXPIRED_RELEASED, RESERVATION_ITEMS, RESERVATION_TRANSITIONS
from stockreserve.movements.repository import record_movement
from stockreserve.reservations.constants import (CANCELLED_REASON, CONFIRMED_REASON, EXPIRED_REASON,
                                                 RESERVED_REASON, UNEXPECTED_REASON, logger)
from stockreserve.reservations.repository import (expired_active_ids, get_reservation_row, insert_reservation,
                                                  set_order_for_reservations, sum_active_quantity,
                                                  transition_status)
from stockreserve.schema.full_schema import MovementType, ReservationStatus
from stockreserve.warehouses.repository import get_default_warehouse_id


def validate_duration(duration_minutes: Optional[float]) -> float:
    if duration_minutes is None:
        return float(config_settings.RESERVATION_DURATION_MINUTES)
    if duration_minutes <= 0 or duration_minutes > config_settings.MAX_RESERVATION_DURATION_MINUTES:
        raise InvalidDuration("Reservation duration out of range", duration_minutes=duration_minutes,
                              max_minutes=config_settings.MAX_RESERVATION_DURATION_MINUTES)
    return float(duration_minutes)


def _reservation_view(reservation) -> Dict[str, Any]:
    return {
        "id": reservation.id,
        "product_id": reservation.product_id,
        "warehouse_id": reservation.warehouse_id,
        "quantity": reservation.quantity,
        "status": reservation.status,
        "expires_at": reservation.expires_at,
        "order_id": reservation.order_id,
    }


async def reserve_items(session: AsyncSession, items: Sequence[Dict[str, Any]], caller_id: Optional[str] = None,
                        duration_minutes: Optional[float] = None, order_id: Optional[str] = None,
                        cart_session_id: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
    """Reserve each line item independently, in request order.

    Every item runs in its own transaction: ledger hold, reservation row and movement
    are committed together, or rolled back together and reported in `failures`.
    A failed item never undoes an earlier success and never stops later items.
    """
    duration = validate_duration(duration_minutes)
    reservations: List[Dict[str, Any]] = []
    failures: List[Dict[str, Any]] = []
    default_wh: Optional[int] = None
    default_wh_loaded = False

    for item in items:
        product_id = item["product_id"]
        quantity = item["quantity"]
        warehouse_id = item.get("warehouse_id")

        try:
            if quantity is None or quantity <= 0:
                raise InvalidQuantity("Quantity must be greater than zero", requested=quantity)

            if warehouse_id is None:
                if not default_wh_loaded:
                    default_wh = await get_default_warehouse_id(session)
                    default_wh_loaded = True
                if default_wh is None:
                    raise NotFound(NO_WAREHOUSE_REASON, requested=quantity)
                warehouse_id = default_wh

            await try_deduct(session, product_id, warehouse_id, quantity)
            reservation = await insert_reservation(
                session, product_id, warehouse_id, quantity,
                expires_at=expiry_from_now(duration),
                user_id=caller_id, order_id=order_id, cart_session_id=cart_session_id,
            )
            await record_movement(session, product_id, warehouse_id, -quantity, MovementType.RESERVATION,
                                  reason=RESERVED_REASON, reservation_id=reservation.id,
                                  order_id=order_id, performed_by=caller_id)
            await session.commit()

        except StockError as e:
            await session.rollback()
            failure = e.as_failure(product_id, warehouse_id)
            failure.setdefault("requested", quantity)
            failures.append(failure)
            RESERVATION_ITEMS.labels(outcome=e.code.lower()).inc()
            logger.info("reservation.item_failed", extra={"product_id": product_id, "warehouse_id": warehouse_id,
                                                          "error_code": e.code, "requested": quantity})
            continue

        except SQLAlchemyError:
            await session.rollback()
            logger.exception("reservation.item_error", extra={"product_id": product_id,
                                                              "warehouse_id": warehouse_id})
            failures.append({"product_id": product_id, "warehouse_id": warehouse_id, "code": "UNEXPECTED_ERROR",
                             "reason": UNEXPECTED_REASON, "requested": quantity})
            RESERVATION_ITEMS.labels(outcome="unexpected_error").inc()
            continue

        reservations.append(_reservation_view(reservation))
        RESERVATION_ITEMS.labels(outcome="reserved").inc()
        logger.info("reservation.created", extra={"reservation_id": str(reservation.id), "product_id": product_id,
                                                  "warehouse_id": warehouse_id, "quantity": quantity,
                                                  "caller_id": caller_id})

    return {"reservations": reservations, "failures": failures}


async def get_reservation(session: AsyncSession, reservation_id: uuid.UUID) -> Dict[str, Any]:
    row = await get_reservation_row(session, reservation_id)
    if row is None:
        raise NotFound("Reservation not found", reservation_id=str(reservation_id))
    return row


async def confirm_reservation(session: AsyncSession, reservation_id: uuid.UUID,
                              performed_by: Optional[str] = None) -> Tuple[Dict[str, Any], bool]:
    """active -> confirmed and the held quantity leaves on_hand for good.

    Returns (reservation, changed). Confirming an already confirmed reservation is a
    no-op (changed False); confirming a cancelled or expired one is InvalidState.
    An active reservation past expires_at can still be confirmed until the sweeper
    has released it.
    """
    ts = now()
    try:
        won = await transition_status(session, reservation_id, ReservationStatus.CONFIRMED, ts)
        if not won:
            row = await get_reservation(session, reservation_id)
            await session.rollback()
            if row["status"] == ReservationStatus.CONFIRMED.value:
                return row, False
            raise InvalidState(f"Reservation is {row['status']}, only active reservations can be confirmed",
                               reservation_id=str(reservation_id), status=row["status"])

        row = await get_reservation(session, reservation_id)
        await confirm_deduction(session, row["product_id"], row["warehouse_id"], row["quantity"])
        await record_movement(session, row["product_id"], row["warehouse_id"], -row["quantity"],
                              MovementType.CONFIRMATION, reason=CONFIRMED_REASON, reservation_id=reservation_id,
                              order_id=row["order_id"], performed_by=performed_by)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    RESERVATION_TRANSITIONS.labels(status=ReservationStatus.CONFIRMED.value).inc()
    logger.info("reservation.confirmed", extra={"reservation_id": str(reservation_id),
                                                "product_id": row["product_id"], "quantity": row["quantity"]})
    return row, True


async def _release(session: AsyncSession, reservation_id: uuid.UUID, target: ReservationStatus, reason: str,
                   performed_by: Optional[str] = None) -> Tuple[Dict[str, Any], bool]:
    """Shared path of cancel and expiry. No-op on a reservation that is already terminal."""
    ts = now()
    try:
        won = await transition_status(session, reservation_id, target, ts)
        row = await get_reservation(session, reservation_id)
        if not won:
            await session.rollback()
            return row, False

        await release_reservation_quantity(session, row["product_id"], row["warehouse_id"], row["quantity"])
        await record_movement(session, row["product_id"], row["warehouse_id"], row["quantity"],
                              MovementType.RELEASE, reason=reason, reservation_id=reservation_id,
                              order_id=row["order_id"], performed_by=performed_by)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    RESERVATION_TRANSITIONS.labels(status=target.value).inc()
    logger.info("reservation.released", extra={"reservation_id": str(reservation_id), "status": target.value,
                                               "product_id": row["product_id"], "quantity": row["quantity"]})
    return row, True


async def cancel_reservation(session: AsyncSession, reservation_id: uuid.UUID,
                             performed_by: Optional[str] = None) -> Tuple[Dict[str, Any], bool]:
    return await _release(session, reservation_id, ReservationStatus.CANCELLED, CANCELLED_REASON, performed_by)


async def expire_reservation(session: AsyncSession, reservation_id: uuid.UUID) -> Tuple[Dict[str, Any], bool]:
    return await _release(session, reservation_id, ReservationStatus.EXPIRED, EXPIRED_REASON, "system")


async def release_expired_reservations(session: AsyncSession, ts: Optional[datetime] = None,
                                       batch_size: Optional[int] = None) -> int:
    """Expire every active reservation whose expires_at has passed. Returns how many were released.

    `batch_size` is the page size: pages are fetched until one comes back short, so a
    backlog is drained in a single call. Each reservation is its own transaction. Losing
    the status race to a concurrent confirm/cancel (or another sweeper) simply doesn't count.
    """
    ts = ts or now()
    limit = batch_size or config_settings.SWEEPER_BATCH_SIZE

    released = 0
    candidates = 0
    while True:
        page = await expired_active_ids(session, ts, limit)
        await session.rollback()   # end the read transaction before per-row writes
        candidates += len(page)

        for reservation_id in page:
            _, changed = await expire_reservation(session, reservation_id)
            if changed:
                released += 1

        # every id of a page leaves the active set, so the next page starts past it
        if len(page) < limit:
            break

    if released:
        EXPIRED_RELEASED.inc(released)
    logger.info("sweeper.pass_done", extra={"candidates": candidates, "released": released})
    return released


async def attach_order(session: AsyncSession, reservation_ids: Sequence[uuid.UUID], order_id: str,
                       caller_id: str) -> int:
    linked = await set_order_for_reservations(session, reservation_ids, order_id, caller_id)
    await session.commit()
    logger.info("reservation.order_linked", extra={"order_id": order_id, "linked": linked,
                                                   "requested_count": len(reservation_ids)})
    return linked


async def reconcile_ledger(session: AsyncSession, product_id: int, warehouse_id: int) -> Dict[str, Any]:
    """Compare the ledger's reserved counter with the sum of active reservations."""
    row = await get_ledger_row(session, product_id, warehouse_id)
    if row is None:
        raise NotFound("Inventory row not found", product_id=product_id, warehouse_id=warehouse_id)
    active_total = await sum_active_quantity(session, product_id, warehouse_id)
    in_sync = active_total == row["quantity_reserved"]
    if not in_sync:
        logger.error("ledger.reserved_drift", extra={"product_id": product_id, "warehouse_id": warehouse_id,
                                                     "quantity_reserved": row["quantity_reserved"],
                                                     "active_total": active_total})
    return {"product_id": product_id, "warehouse_id": warehouse_id,
            "quantity_reserved": row["quantity_reserved"], "active_reservations_total": active_total,
            "in_sync": in_sync}
