from typing import Any, Dict, List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from stockreserve.common.custom_exceptions import StockError
from stockreserve.orders.constants import NETOPIA_PROVIDER, logger
from stockreserve.orders.repository import get_webhook_event, mark_webhook_processed, mark_webhook_received
from stockreserve.orders.utils import CONFIRM, IGNORE
from stockreserve.reservations.repository import reservation_ids_for_order
from stockreserve.reservations.services import cancel_reservation, confirm_reservation
from stockreserve.schema.full_schema import PaymentEventStatus


async def record_event(session: AsyncSession, provider_event_id: str, order_id: str, action: str,
                       payload: dict) -> Dict[str, Any]:
    """Store the callback once. Returns the stored event (id, status, processed_at)."""
    existing = await get_webhook_event(session, NETOPIA_PROVIDER, provider_event_id)
    if existing is not None:
        await session.rollback()
        return existing
    try:
        await mark_webhook_received(session, NETOPIA_PROVIDER, provider_event_id, payload,
                                    order_id=order_id, action=action)
        await session.commit()
    except IntegrityError:
        # same event delivered twice at once
        await session.rollback()
    return await get_webhook_event(session, NETOPIA_PROVIDER, provider_event_id)


async def apply_payment_outcome(session: AsyncSession, ev: Dict[str, Any], order_id: str, decision: str,
                                performed_by: Optional[str] = None) -> Dict[str, Any]:
    """Confirm or release every reservation linked to the order.

    Runs under the order's payment lock. A paid order whose hold already expired or
    was cancelled lands in `errors` and the event is marked failed. Releasing a
    terminal reservation is a no-op. One reservation failing does not stop the others.
    """
    result: Dict[str, Any] = {"order_id": order_id, "decision": decision,
                              "confirmed": [], "released": [], "errors": []}

    if decision == IGNORE:
        await mark_webhook_processed(session, ev["id"], PaymentEventStatus.IGNORED)
        await session.commit()
        logger.info("payment_webhook.ignored", extra={"order_id": order_id, "event_db_id": ev["id"]})
        return result

    reservation_ids = await reservation_ids_for_order(session, order_id)
    await session.rollback()

    errors: List[Dict[str, Any]] = result["errors"]
    for reservation_id in reservation_ids:
        try:
            if decision == CONFIRM:
                _, changed = await confirm_reservation(session, reservation_id, performed_by=performed_by)
                if changed:
                    result["confirmed"].append(str(reservation_id))
            else:
                _, changed = await cancel_reservation(session, reservation_id, performed_by=performed_by)
                if changed:
                    result["released"].append(str(reservation_id))
        except StockError as e:
            logger.warning("payment_webhook.reservation_failed", extra={"order_id": order_id,
                                                                        "reservation_id": str(reservation_id),
                                                                        "error_code": e.code})
            errors.append({"reservation_id": str(reservation_id), "code": e.code, "reason": e.reason})

    final_status = PaymentEventStatus.FAILED if errors else PaymentEventStatus.PROCESSED
    last_error = "; ".join(f"{e['reservation_id']}: {e['code']}" for e in errors) or None
    await mark_webhook_processed(session, ev["id"], final_status, last_error=last_error)
    await session.commit()

    logger.info("payment_webhook.processed", extra={"order_id": order_id, "decision": decision,
                                                    "confirmed": len(result["confirmed"]),
                                                    "released": len(result["released"]),
                                                    "errors": len(errors)})
    return result
