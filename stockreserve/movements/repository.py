import uuid
from typing import Any, Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from stockreserve.movements.constants import DEFAULT_HISTORY_LIMIT
from stockreserve.schema.full_schema import MovementStatus, MovementType, StockMovement


async def record_movement(session: AsyncSession, product_id: int, warehouse_id: int, quantity: int,
                          movement_type: MovementType, reason: Optional[str] = None,
                          status: MovementStatus = MovementStatus.COMPLETED,
                          reservation_id: Optional[uuid.UUID] = None, order_id: Optional[str] = None,
                          performed_by: Optional[str] = None) -> StockMovement:
    """Append one audit row in the caller's transaction. Rows are never touched again."""
    movement = StockMovement(
        product_id=product_id,
        warehouse_id=warehouse_id,
        quantity=quantity,
        movement_type=MovementType(movement_type).value,
        reason=reason,
        status=MovementStatus(status).value,
        reservation_id=reservation_id,
        order_id=order_id,
        performed_by=performed_by,
    )
    session.add(movement)
    await session.flush()
    return movement


async def list_movements(session: AsyncSession, product_id: int, warehouse_id: Optional[int] = None,
                         movement_type: Optional[MovementType] = None,
                         limit: int = DEFAULT_HISTORY_LIMIT) -> List[Dict[str, Any]]:
    """Newest first."""
    stmt = select(
        StockMovement.id, StockMovement.product_id, StockMovement.warehouse_id, StockMovement.quantity,
        StockMovement.movement_type, StockMovement.reason, StockMovement.status,
        StockMovement.reservation_id, StockMovement.order_id, StockMovement.performed_by,
        StockMovement.created_at,
    ).where(StockMovement.product_id == product_id)

    if warehouse_id is not None:
        stmt = stmt.where(StockMovement.warehouse_id == warehouse_id)
    if movement_type is not None:
        stmt = stmt.where(StockMovement.movement_type == MovementType(movement_type).value)

    stmt = stmt.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit)
    res = await session.execute(stmt)
    return [dict(r._mapping) for r in res.all()]
