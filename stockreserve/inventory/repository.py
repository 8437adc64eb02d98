from typing import Any, Dict, List, Optional
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from stockreserve.common.custom_exceptions import (Conflict, InsufficientStock, InvalidAdjustment,
                                                   InvalidQuantity, LedgerIntegrityError)
from stockreserve.inventory.constants import NOT_STOCKED_REASON, logger
from stockreserve.schema.full_schema import Inventory

# Every mutation below is one conditional UPDATE. The WHERE clause carries the guard
# (version and/or quantity predicate) so check and write happen in a single statement;
# rowcount 0 means the guard failed and nothing was written.
#
# None of these functions commit: the caller owns the transaction.


def _row_key(product_id: int, warehouse_id: int):
    return (Inventory.product_id == product_id, Inventory.warehouse_id == warehouse_id)


async def get_ledger_row(session: AsyncSession, product_id: int, warehouse_id: int) -> Optional[Dict[str, Any]]:
    stmt = select(
        Inventory.id, Inventory.product_id, Inventory.warehouse_id, Inventory.quantity_on_hand,
        Inventory.quantity_reserved, Inventory.version, Inventory.updated_at,
    ).where(*_row_key(product_id, warehouse_id))
    res = await session.execute(stmt)
    row = res.one_or_none()
    if row is None:
        return None
    data = dict(row._mapping)
    data["available"] = data["quantity_on_hand"] - data["quantity_reserved"]
    return data


async def try_deduct(session: AsyncSession, product_id: int, warehouse_id: int, quantity: int,
                     expected_version: Optional[int] = None) -> int:
    """Move `quantity` from available into reserved. Returns the row's new version.

    Optimistic: the version read here must still be current when the UPDATE runs,
    otherwise another writer got in between and Conflict is raised without any change.
    An explicit `expected_version` pins the version the caller saw earlier.
    """
    if quantity <= 0:
        raise InvalidQuantity("Quantity must be greater than zero", requested=quantity)

    row = await get_ledger_row(session, product_id, warehouse_id)
    if row is None:
        raise InsufficientStock(available=0, requested=quantity, reason=NOT_STOCKED_REASON)

    if expected_version is not None and row["version"] != expected_version:
        logger.info("ledger.version_mismatch", extra={"product_id": product_id, "warehouse_id": warehouse_id,
                                                      "expected_version": expected_version,
                                                      "current_version": row["version"]})
        raise Conflict(expected_version=expected_version, current_version=row["version"])

    if row["available"] < quantity:
        raise InsufficientStock(available=row["available"], requested=quantity)

    seen_version = row["version"]
    stmt = (
        update(Inventory)
        .where(
            *_row_key(product_id, warehouse_id),
            Inventory.version == seen_version,
            Inventory.quantity_on_hand - Inventory.quantity_reserved >= quantity,
        )
        .values(quantity_reserved=Inventory.quantity_reserved + quantity, version=Inventory.version + 1)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    if res.rowcount != 1:
        logger.info("ledger.conflict", extra={"product_id": product_id, "warehouse_id": warehouse_id,
                                              "expected_version": seen_version})
        raise Conflict(expected_version=seen_version)

    return seen_version + 1


async def confirm_deduction(session: AsyncSession, product_id: int, warehouse_id: int, quantity: int) -> None:
    """Reserved stock leaves the building: on_hand and reserved both drop by `quantity`."""
    stmt = (
        update(Inventory)
        .where(
            *_row_key(product_id, warehouse_id),
            Inventory.quantity_reserved >= quantity,
            Inventory.quantity_on_hand >= quantity,
        )
        .values(
            quantity_on_hand=Inventory.quantity_on_hand - quantity,
            quantity_reserved=Inventory.quantity_reserved - quantity,
            version=Inventory.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    if res.rowcount != 1:
        logger.error("ledger.confirm_guard_failed", extra={"product_id": product_id, "warehouse_id": warehouse_id,
                                                           "quantity": quantity})
        raise LedgerIntegrityError("Ledger does not hold the reserved quantity",
                                   product_id=product_id, warehouse_id=warehouse_id, requested=quantity)


async def release_reservation_quantity(session: AsyncSession, product_id: int, warehouse_id: int, quantity: int) -> None:
    """Give a held quantity back to available. on_hand is untouched."""
    stmt = (
        update(Inventory)
        .where(*_row_key(product_id, warehouse_id), Inventory.quantity_reserved >= quantity)
        .values(quantity_reserved=Inventory.quantity_reserved - quantity, version=Inventory.version + 1)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    if res.rowcount != 1:
        logger.error("ledger.release_guard_failed", extra={"product_id": product_id, "warehouse_id": warehouse_id,
                                                           "quantity": quantity})
        raise LedgerIntegrityError("Ledger does not hold the reserved quantity",
                                   product_id=product_id, warehouse_id=warehouse_id, requested=quantity)


async def adjust(session: AsyncSession, product_id: int, warehouse_id: int, delta: int) -> Dict[str, Any]:
    """Apply a signed correction to on_hand. Returns the row after the change.

    on_hand may never drop below zero, nor below what active reservations hold.
    A positive delta on an unstocked pair creates the ledger row.
    """
    if delta == 0:
        raise InvalidAdjustment("Adjustment delta must be non-zero", delta=delta)

    stmt = (
        update(Inventory)
        .where(
            *_row_key(product_id, warehouse_id),
            Inventory.quantity_on_hand + delta >= Inventory.quantity_reserved,
            Inventory.quantity_on_hand + delta >= 0,
        )
        .values(quantity_on_hand=Inventory.quantity_on_hand + delta, version=Inventory.version + 1)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)

    if res.rowcount != 1:
        row = await get_ledger_row(session, product_id, warehouse_id)
        if row is not None:
            raise InvalidAdjustment("Adjustment would drive stock below zero or below reserved quantity",
                                    delta=delta, quantity_on_hand=row["quantity_on_hand"],
                                    quantity_reserved=row["quantity_reserved"])
        if delta < 0:
            raise InvalidAdjustment("Adjustment would drive stock below zero",
                                    delta=delta, quantity_on_hand=0, quantity_reserved=0)
        # first stock-in for this pair; a racing insert surfaces as IntegrityError on flush
        session.add(Inventory(product_id=product_id, warehouse_id=warehouse_id,
                              quantity_on_hand=delta, quantity_reserved=0, version=1))
        await session.flush()

    return await get_ledger_row(session, product_id, warehouse_id)


async def get_inventory(session: AsyncSession, product_id: int) -> List[Dict[str, Any]]:
    stmt = select(
        Inventory.product_id, Inventory.warehouse_id, Inventory.quantity_on_hand,
        Inventory.quantity_reserved, Inventory.version, Inventory.updated_at,
    ).where(Inventory.product_id == product_id).order_by(Inventory.warehouse_id)
    res = await session.execute(stmt)
    rows = []
    for r in res.all():
        data = dict(r._mapping)
        data["available"] = data["quantity_on_hand"] - data["quantity_reserved"]
        rows.append(data)
    return rows


async def get_total_stock(session: AsyncSession, product_id: int) -> Dict[str, int]:
    stmt = select(
        func.coalesce(func.sum(Inventory.quantity_on_hand), 0),
        func.coalesce(func.sum(Inventory.quantity_reserved), 0),
    ).where(Inventory.product_id == product_id)
    res = await session.execute(stmt)
    on_hand, reserved = res.one()
    return {"quantity_on_hand": int(on_hand), "quantity_reserved": int(reserved),
            "available": int(on_hand) - int(reserved)}


async def check_availability(session: AsyncSession, product_id: int, quantity: int,
                             warehouse_id: Optional[int] = None) -> Dict[str, Any]:
    """Advisory read, nothing is held."""
    if warehouse_id is not None:
        row = await get_ledger_row(session, product_id, warehouse_id)
        available = row["available"] if row else 0
    else:
        available = (await get_total_stock(session, product_id))["available"]
    return {"product_id": product_id, "warehouse_id": warehouse_id, "requested": quantity,
            "available": available, "is_available": quantity > 0 and available >= quantity}
