from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from stockreserve.auth.dependencies import Caller, require_admin
from stockreserve.common.utils import success_response
from stockreserve.db.dependencies import get_session
from stockreserve.warehouses.constants import logger
from stockreserve.warehouses.models import WarehouseCreateIn, WarehouseOut
from stockreserve.warehouses.repository import create_warehouse, list_warehouses

warehouses_admin_router = APIRouter()


@warehouses_admin_router.post("")
async def add_warehouse(payload: WarehouseCreateIn,
                        session: AsyncSession = Depends(get_session),
                        caller: Caller = Depends(require_admin)):
    try:
        wh = await create_warehouse(session, payload.code, payload.name,
                                    is_default=payload.is_default, is_active=payload.is_active)
        await session.commit()
    except IntegrityError:
        await session.rollback()
        logger.warning("warehouse.duplicate_code", extra={"code_value": payload.code})
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="warehouse code already exists")

    logger.info("warehouse.created", extra={"warehouse_id": wh["id"], "performed_by": caller.id})
    return success_response({"warehouse": WarehouseOut(**wh).model_dump()}, status_code=201)


@warehouses_admin_router.get("")
async def get_warehouses(session: AsyncSession = Depends(get_session),
                         caller: Caller = Depends(require_admin)):
    rows = await list_warehouses(session)
    return success_response({"warehouses": [WarehouseOut(**r).model_dump() for r in rows]})
