import json
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from stockreserve.common.custom_exceptions import AlreadyLocked
from stockreserve.common.utils import json_ok
from stockreserve.config.settings import config_settings
from stockreserve.db.dependencies import get_session, get_session_factory
from stockreserve.locks.constants import order_payment_lock_key
from stockreserve.locks.repository import hold_lock
from stockreserve.orders.constants import SIGNATURE_HEADER, logger
from stockreserve.orders.services import apply_payment_outcome, record_event
from stockreserve.orders.utils import classify_payment_action, signature_matches


async def netopia_webhook(request: Request, session: AsyncSession = Depends(get_session),
                          session_maker=Depends(get_session_factory)):
    body = await request.body()
    if not signature_matches(body, request.headers.get(SIGNATURE_HEADER), config_settings.NETOPIA_WEBHOOK_SECRET):
        logger.error("netopia_webhook.invalid_signature")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid IPN data")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid IPN data")

    event_id = payload.get("event_id") or payload.get("transactionId")
    order_id = payload.get("order_id") or payload.get("orderId")
    action = payload.get("action")
    if not event_id or not order_id or not action:
        logger.error("netopia_webhook.missing_fields", extra={"has_event_id": bool(event_id),
                                                              "has_order_id": bool(order_id)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid IPN data")
    event_id, order_id = str(event_id), str(order_id)

    ev = await record_event(session, event_id, order_id, action, payload)
    if ev["processed_at"] is not None:
        return json_ok({"status": "ok", "note": "already processed"})

    decision = classify_payment_action(action)
    try:
        async with hold_lock(session_maker, order_payment_lock_key(order_id), f"netopia:{event_id}",
                             config_settings.LOCK_DEFAULT_TTL_SECONDS):
            # another delivery may have finished while we waited for the request to get here
            ev = await record_event(session, event_id, order_id, action, payload)
            if ev["processed_at"] is not None:
                return json_ok({"status": "ok", "note": "already processed"})
            result = await apply_payment_outcome(session, ev, order_id, decision, performed_by="netopia")
    except AlreadyLocked:
        # non-2xx makes the gateway deliver again later
        logger.warning("netopia_webhook.order_locked", extra={"order_id": order_id})
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Order payment is being processed")

    return json_ok({"status": "ok", "data": result})
