from typing import Any, Dict, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from stockreserve.common.custom_exceptions import Conflict, InvalidAdjustment, NotFound
from stockreserve.inventory.constants import NO_WAREHOUSE_REASON, logger
from stockreserve.inventory.repository import adjust
from stockreserve.movements.repository import record_movement
from stockreserve.schema.full_schema import MovementStatus, MovementType
from stockreserve.warehouses.repository import get_default_warehouse_id, warehouse_exists


async def resolve_warehouse_id(session: AsyncSession, warehouse_id: Optional[int]) -> int:
    if warehouse_id is not None:
        return warehouse_id
    default_id = await get_default_warehouse_id(session)
    if default_id is None:
        raise NotFound(NO_WAREHOUSE_REASON)
    return default_id


async def adjust_stock(session: AsyncSession, product_id: int, warehouse_id: Optional[int], delta: int,
                       reason: str, performed_by: Optional[str] = None) -> Dict[str, Any]:
    """Manual stock correction with its audit row, committed as one transaction.

    A rejected adjustment is rolled back and then recorded as a failed movement so the
    attempt still shows up in the history.
    """
    wh_id = await resolve_warehouse_id(session, warehouse_id)
    if not await warehouse_exists(session, wh_id):
        raise NotFound("Warehouse not found", warehouse_id=wh_id)

    try:
        row = await adjust(session, product_id, wh_id, delta)
        await record_movement(session, product_id, wh_id, delta, MovementType.ADJUSTMENT,
                              reason=reason, performed_by=performed_by)
        await session.commit()
    except InvalidAdjustment as e:
        await session.rollback()
        await record_movement(session, product_id, wh_id, delta, MovementType.ADJUSTMENT,
                              reason=f"{reason} (rejected: {e.reason})", status=MovementStatus.FAILED,
                              performed_by=performed_by)
        await session.commit()
        logger.warning("inventory.adjust_rejected", extra={"product_id": product_id, "warehouse_id": wh_id,
                                                           "delta": delta, "performed_by": performed_by})
        raise
    except IntegrityError:
        # lost the race to create the first ledger row for this pair
        await session.rollback()
        raise Conflict("Inventory row was created concurrently, retry the adjustment")

    logger.info("inventory.adjusted", extra={"product_id": product_id, "warehouse_id": wh_id, "delta": delta,
                                             "quantity_on_hand": row["quantity_on_hand"],
                                             "performed_by": performed_by})
    return row
