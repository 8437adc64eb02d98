import asyncio
import uuid
from datetime import timedelta
import pytest
from conftest import ledger, seed_inventory
from stockreserve.common.custom_exceptions import InvalidState, NotFound
from stockreserve.common.utils import now
from stockreserve.db.connection import async_session
from stockreserve.movements.repository import list_movements
from stockreserve.reservations.services import (cancel_reservation, confirm_reservation, expire_reservation,
                                                get_reservation, reconcile_ledger, release_expired_reservations,
                                                reserve_items)
from stockreserve.schema.full_schema import (TERMINAL_RESERVATION_STATUSES, MovementType, ReservationStatus,
                                             can_transition)


async def _reserve(session, warehouse_id, qty=10, product_id=1, duration=15):
    outcome = await reserve_items(session, [{"product_id": product_id, "quantity": qty, "warehouse_id": warehouse_id}],
                                  caller_id="user-1", duration_minutes=duration)
    return outcome["reservations"][0]["id"]


@pytest.mark.asyncio
async def test_transition_table_only_allows_moves_out_of_active():
    assert can_transition(ReservationStatus.ACTIVE, ReservationStatus.CONFIRMED)
    assert can_transition(ReservationStatus.ACTIVE, ReservationStatus.EXPIRED)
    assert not can_transition(ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED)
    assert not can_transition(ReservationStatus.EXPIRED, ReservationStatus.ACTIVE)
    assert TERMINAL_RESERVATION_STATUSES == {ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED,
                                             ReservationStatus.EXPIRED}


@pytest.mark.asyncio
async def test_confirm_deducts_on_hand(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=100)
    rid = await _reserve(db_session, warehouse_id)

    reservation, changed = await confirm_reservation(db_session, rid, performed_by="ops-1")

    assert changed is True
    row = await ledger(db_session, 1, warehouse_id)
    assert row["quantity_on_hand"] == 90
    assert row["quantity_reserved"] == 0
    stored = await get_reservation(db_session, rid)
    assert stored["status"] == "confirmed"
    assert stored["confirmed_at"] is not None

    confirmations = await list_movements(db_session, 1, warehouse_id, MovementType.CONFIRMATION)
    assert [m["quantity"] for m in confirmations] == [-10]


@pytest.mark.asyncio
async def test_confirm_twice_is_a_noop(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=100)
    rid = await _reserve(db_session, warehouse_id)
    await confirm_reservation(db_session, rid)

    _, changed = await confirm_reservation(db_session, rid)

    assert changed is False
    row = await ledger(db_session, 1, warehouse_id)
    assert row["quantity_on_hand"] == 90
    assert len(await list_movements(db_session, 1, warehouse_id, MovementType.CONFIRMATION)) == 1


@pytest.mark.asyncio
async def test_cancel_releases_and_is_idempotent(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=100)
    rid = await _reserve(db_session, warehouse_id)

    reservation, changed = await cancel_reservation(db_session, rid)
    assert changed is True
    assert reservation["status"] == "cancelled"

    _, changed = await cancel_reservation(db_session, rid)
    assert changed is False

    row = await ledger(db_session, 1, warehouse_id)
    assert row["quantity_on_hand"] == 100
    assert row["quantity_reserved"] == 0
    releases = await list_movements(db_session, 1, warehouse_id, MovementType.RELEASE)
    assert [m["quantity"] for m in releases] == [10]


@pytest.mark.asyncio
async def test_confirm_after_cancel_is_invalid_state(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=100)
    rid = await _reserve(db_session, warehouse_id)
    await cancel_reservation(db_session, rid)

    with pytest.raises(InvalidState):
        await confirm_reservation(db_session, rid)

    row = await ledger(db_session, 1, warehouse_id)
    assert row["quantity_on_hand"] == 100


@pytest.mark.asyncio
async def test_unknown_reservation_is_not_found(db_session, warehouse_id):
    with pytest.raises(NotFound):
        await confirm_reservation(db_session, uuid.uuid4())
    with pytest.raises(NotFound):
        await cancel_reservation(db_session, uuid.uuid4())


@pytest.mark.asyncio
async def test_sweeper_expires_past_due_reservations(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=100)
    rid = await _reserve(db_session, warehouse_id, duration=1)
    assert (await ledger(db_session, 1, warehouse_id))["quantity_reserved"] == 10

    assert await release_expired_reservations(db_session) == 0

    released = await release_expired_reservations(db_session, ts=now() + timedelta(minutes=2))

    assert released == 1
    stored = await get_reservation(db_session, rid)
    assert stored["status"] == "expired"
    assert stored["expired_at"] is not None
    row = await ledger(db_session, 1, warehouse_id)
    assert row["quantity_reserved"] == 0
    assert row["quantity_on_hand"] == 100

    assert await release_expired_reservations(db_session, ts=now() + timedelta(minutes=2)) == 0


@pytest.mark.asyncio
async def test_short_lived_reservation_expires_for_real(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=100)
    rid = await _reserve(db_session, warehouse_id, duration=0.002)

    await asyncio.sleep(0.3)
    assert await release_expired_reservations(db_session) == 1
    assert (await get_reservation(db_session, rid))["status"] == "expired"


@pytest.mark.asyncio
async def test_expired_reservation_cannot_be_confirmed(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=100)
    rid = await _reserve(db_session, warehouse_id)
    await expire_reservation(db_session, rid)

    with pytest.raises(InvalidState):
        await confirm_reservation(db_session, rid)
    _, changed = await cancel_reservation(db_session, rid)
    assert changed is False


@pytest.mark.asyncio
async def test_racing_confirm_and_expire_apply_exactly_once(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=100)
    rid = await _reserve(db_session, warehouse_id)

    async def confirm():
        async with async_session() as s:
            return (await confirm_reservation(s, rid))[1]

    async def expire():
        async with async_session() as s:
            return (await expire_reservation(s, rid))[1]

    results = await asyncio.gather(confirm(), expire(), expire(), return_exceptions=True)

    applied = [r for r in results if r is True]
    assert len(applied) == 1
    assert all(r is False or r is True or isinstance(r, InvalidState) for r in results)

    row = await ledger(db_session, 1, warehouse_id)
    stored = await get_reservation(db_session, rid)
    assert row["quantity_reserved"] == 0
    if stored["status"] == "confirmed":
        assert row["quantity_on_hand"] == 90
    else:
        assert stored["status"] == "expired"
        assert row["quantity_on_hand"] == 100


@pytest.mark.asyncio
async def test_conservation_after_mixed_operations(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=60)
    ids = [await _reserve(db_session, warehouse_id, qty=q) for q in (5, 6, 7, 8)]

    await confirm_reservation(db_session, ids[0])
    await cancel_reservation(db_session, ids[1])
    await expire_reservation(db_session, ids[2])

    report = await reconcile_ledger(db_session, 1, warehouse_id)
    assert report["in_sync"] is True
    assert report["quantity_reserved"] == 8
    row = await ledger(db_session, 1, warehouse_id)
    assert row["quantity_on_hand"] == 55


@pytest.mark.asyncio
async def test_sweep_drains_backlog_larger_than_one_page(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=100)
    ids = [await _reserve(db_session, warehouse_id, qty=2, duration=1) for _ in range(5)]

    released = await release_expired_reservations(db_session, ts=now() + timedelta(minutes=2), batch_size=2)

    assert released == 5
    assert all([(await get_reservation(db_session, rid))["status"] == "expired" for rid in ids])
    assert (await ledger(db_session, 1, warehouse_id))["quantity_reserved"] == 0
