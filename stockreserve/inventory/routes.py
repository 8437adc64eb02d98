from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from stockreserve.auth.dependencies import Caller, require_admin
from stockreserve.common.utils import success_response
from stockreserve.db.dependencies import get_session
from stockreserve.inventory.models import StockAdjustIn
from stockreserve.inventory.repository import check_availability, get_inventory, get_total_stock
from stockreserve.inventory.services import adjust_stock
from stockreserve.movements.constants import DEFAULT_HISTORY_LIMIT, MAX_HISTORY_LIMIT
from stockreserve.movements.repository import list_movements
from stockreserve.schema.full_schema import MovementType

inventory_public_router = APIRouter()
inventory_admin_router = APIRouter()


@inventory_public_router.get("/{product_id}")
async def product_inventory(product_id: int, session: AsyncSession = Depends(get_session)):
    rows = await get_inventory(session, product_id)
    totals = await get_total_stock(session, product_id)
    return success_response({"product_id": product_id, "warehouses": rows, "totals": totals})


@inventory_public_router.get("/{product_id}/availability")
async def product_availability(product_id: int,
                               quantity: int = Query(1, ge=1),
                               warehouse_id: Optional[int] = Query(None),
                               session: AsyncSession = Depends(get_session)):
    return success_response(await check_availability(session, product_id, quantity, warehouse_id))

# -----------------------------------------------------------------------------------------------------------------------

@inventory_admin_router.post("/adjust")
async def adjust_inventory(payload: StockAdjustIn,
                           session: AsyncSession = Depends(get_session),
                           caller: Caller = Depends(require_admin)):
    row = await adjust_stock(session, payload.product_id, payload.warehouse_id, payload.delta,
                             payload.reason, performed_by=caller.id)
    return success_response({"inventory": row})


@inventory_admin_router.get("/{product_id}/movements")
async def movement_history(product_id: int,
                           warehouse_id: Optional[int] = Query(None),
                           movement_type: Optional[MovementType] = Query(None),
                           limit: int = Query(DEFAULT_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
                           session: AsyncSession = Depends(get_session),
                           caller: Caller = Depends(require_admin)):
    movements = await list_movements(session, product_id, warehouse_id, movement_type, limit)
    return success_response({"product_id": product_id, "movements": movements})
