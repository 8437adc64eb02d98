from typing import Any, Dict, List, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from stockreserve.schema.full_schema import Warehouse


async def get_default_warehouse_id(session: AsyncSession) -> Optional[int]:
    stmt = (select(Warehouse.id)
            .where(Warehouse.is_default.is_(True), Warehouse.is_active.is_(True))
            .order_by(Warehouse.id)
            .limit(1))
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def warehouse_exists(session: AsyncSession, warehouse_id: int) -> bool:
    res = await session.execute(select(Warehouse.id).where(Warehouse.id == warehouse_id))
    return res.scalar_one_or_none() is not None


async def create_warehouse(session: AsyncSession, code: str, name: str,
                           is_default: bool = False, is_active: bool = True) -> Dict[str, Any]:
    """Caller commits. A new default takes the flag away from every other warehouse."""
    if is_default:
        await session.execute(
            update(Warehouse).where(Warehouse.is_default.is_(True)).values(is_default=False)
            .execution_options(synchronize_session=False)
        )
    wh = Warehouse(code=code, name=name, is_default=is_default, is_active=is_active)
    session.add(wh)
    await session.flush()
    return {"id": wh.id, "code": wh.code, "name": wh.name, "is_default": wh.is_default, "is_active": wh.is_active}


async def list_warehouses(session: AsyncSession) -> List[Dict[str, Any]]:
    stmt = select(Warehouse.id, Warehouse.code, Warehouse.name, Warehouse.is_default,
                  Warehouse.is_active).order_by(Warehouse.id)
    res = await session.execute(stmt)
    return [dict(r._mapping) for r in res.all()]
