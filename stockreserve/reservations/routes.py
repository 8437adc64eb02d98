import uuid
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from stockreserve.auth.dependencies import Caller, authenticate, require_admin
from stockreserve.background_workers.expiry_sweeper import ExpirySweeper
from stockreserve.common.retries import retry_conflicting_items
from stockreserve.common.utils import json_ok, success_response
from stockreserve.config.settings import config_settings
from stockreserve.db.dependencies import get_session, get_session_factory
from stockreserve.reservations.constants import logger
from stockreserve.reservations.models import AttachOrderIn, ReserveRequestIn, ReserveResponse
from stockreserve.reservations.repository import list_reservations
from stockreserve.reservations.services import (attach_order, cancel_reservation, confirm_reservation,
                                                get_reservation, reconcile_ledger, reserve_items,
                                                validate_duration)
from stockreserve.schema.full_schema import ReservationStatus

stock_reserve_router = APIRouter()
reservations_router = APIRouter()
reservations_admin_router = APIRouter()


def batch_status_code(reserved: int, failed: int) -> int:
    if not failed:
        return status.HTTP_200_OK
    if reserved:
        return status.HTTP_207_MULTI_STATUS
    return status.HTTP_409_CONFLICT


@stock_reserve_router.post("/stock-reserve")
async def stock_reserve(payload: ReserveRequestIn,
                        session: AsyncSession = Depends(get_session),
                        caller: Caller = Depends(authenticate)):
    # structural checks abort before any ledger access
    duration = validate_duration(payload.duration_minutes)
    items = [item.model_dump() for item in payload.items]

    async def submit(batch: List[Dict[str, Any]]):
        return await reserve_items(session, batch, caller_id=caller.id, duration_minutes=duration,
                                   order_id=payload.order_id, cart_session_id=payload.cart_session_id)

    # version conflicts are transient: re-submit just those items a bounded number of times
    outcome = await retry_conflicting_items(submit, items,
                                            attempts=config_settings.CONFLICT_RETRY_ATTEMPTS,
                                            base_delay=config_settings.CONFLICT_RETRY_BASE_DELAY)

    body = ReserveResponse(success=not outcome["failures"],
                           reservations=outcome["reservations"],
                           failures=outcome["failures"])
    status_code = batch_status_code(len(body.reservations), len(body.failures))
    logger.info("reservation.batch_done", extra={"caller_id": caller.id, "reserved": len(body.reservations),
                                                 "failed": len(body.failures), "status_code": status_code})
    return json_ok(body.model_dump(mode="json"), status_code=status_code)

# -----------------------------------------------------------------------------------------------------------------------

def _ensure_can_see(caller: Caller, reservation: Dict[str, Any]):
    if caller.is_admin or reservation["user_id"] == caller.id:
        return
    # don't leak existence of other callers' reservations
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")


@reservations_router.get("")
async def my_reservations(status_filter: Optional[ReservationStatus] = Query(None, alias="status"),
                          order_id: Optional[str] = Query(None),
                          limit: int = Query(100, ge=1, le=500),
                          session: AsyncSession = Depends(get_session),
                          caller: Caller = Depends(authenticate)):
    rows = await list_reservations(session, user_id=caller.id, status=status_filter, order_id=order_id, limit=limit)
    return success_response({"reservations": rows})


@reservations_router.post("/attach-order")
async def link_order(payload: AttachOrderIn,
                     session: AsyncSession = Depends(get_session),
                     caller: Caller = Depends(authenticate)):
    linked = await attach_order(session, payload.reservation_ids, payload.order_id, caller.id)
    return success_response({"order_id": payload.order_id, "linked": linked})


@reservations_router.get("/{reservation_id}")
async def reservation_detail(reservation_id: uuid.UUID,
                             session: AsyncSession = Depends(get_session),
                             caller: Caller = Depends(authenticate)):
    reservation = await get_reservation(session, reservation_id)
    _ensure_can_see(caller, reservation)
    return success_response({"reservation": reservation})


@reservations_router.post("/{reservation_id}/cancel")
async def cancel(reservation_id: uuid.UUID,
                 session: AsyncSession = Depends(get_session),
                 caller: Caller = Depends(authenticate)):
    reservation = await get_reservation(session, reservation_id)
    _ensure_can_see(caller, reservation)
    reservation, changed = await cancel_reservation(session, reservation_id, performed_by=caller.id)
    return success_response({"reservation": reservation, "changed": changed})

# -----------------------------------------------------------------------------------------------------------------------

@reservations_admin_router.post("/release-expired")
async def release_expired(session_maker=Depends(get_session_factory),
                          caller: Caller = Depends(require_admin)):
    released = await ExpirySweeper(session_maker, holder_id=f"admin:{caller.id}").run_once()
    return success_response({"released": released})


@reservations_admin_router.get("/reconcile")
async def reconcile(product_id: int = Query(...), warehouse_id: int = Query(...),
                    session: AsyncSession = Depends(get_session),
                    caller: Caller = Depends(require_admin)):
    return success_response(await reconcile_ledger(session, product_id, warehouse_id))


@reservations_admin_router.post("/{reservation_id}/confirm")
async def confirm(reservation_id: uuid.UUID,
                  session: AsyncSession = Depends(get_session),
                  caller: Caller = Depends(require_admin)):
    reservation, changed = await confirm_reservation(session, reservation_id, performed_by=caller.id)
    return success_response({"reservation": reservation, "changed": changed})
