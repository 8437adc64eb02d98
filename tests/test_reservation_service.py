import pytest
from conftest import ledger, seed_inventory
from stockreserve.common.custom_exceptions import InvalidDuration
from stockreserve.common.utils import now
from stockreserve.movements.repository import list_movements
from stockreserve.reservations.services import reconcile_ledger, reserve_items
from stockreserve.schema.full_schema import MovementType


@pytest.mark.asyncio
async def test_partial_batch_keeps_successful_items(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=10)
    await seed_inventory(db_session, 2, warehouse_id, on_hand=5)

    outcome = await reserve_items(db_session, [
        {"product_id": 1, "quantity": 10, "warehouse_id": warehouse_id},
        {"product_id": 2, "quantity": 10, "warehouse_id": warehouse_id},
    ], caller_id="user-1")

    assert [(r["product_id"], r["quantity"], r["status"]) for r in outcome["reservations"]] == [(1, 10, "active")]
    assert len(outcome["failures"]) == 1
    failure = outcome["failures"][0]
    assert failure["product_id"] == 2
    assert "Insufficient stock" in failure["reason"]
    assert failure["available"] == 5
    assert failure["requested"] == 10

    a = await ledger(db_session, 1, warehouse_id)
    b = await ledger(db_session, 2, warehouse_id)
    assert a["quantity_reserved"] == 10
    assert b["quantity_reserved"] == 0


@pytest.mark.asyncio
async def test_failure_in_the_middle_does_not_stop_later_items(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=10)
    await seed_inventory(db_session, 2, warehouse_id, on_hand=0)
    await seed_inventory(db_session, 3, warehouse_id, on_hand=10)

    outcome = await reserve_items(db_session, [
        {"product_id": 1, "quantity": 1, "warehouse_id": warehouse_id},
        {"product_id": 2, "quantity": 1, "warehouse_id": warehouse_id},
        {"product_id": 3, "quantity": 1, "warehouse_id": warehouse_id},
    ], caller_id="user-1")

    assert [r["product_id"] for r in outcome["reservations"]] == [1, 3]
    assert [f["product_id"] for f in outcome["failures"]] == [2]


@pytest.mark.asyncio
async def test_invalid_quantity_is_an_item_failure(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=10)

    outcome = await reserve_items(db_session, [
        {"product_id": 1, "quantity": 0, "warehouse_id": warehouse_id},
        {"product_id": 1, "quantity": -2, "warehouse_id": warehouse_id},
        {"product_id": 1, "quantity": 2, "warehouse_id": warehouse_id},
    ], caller_id="user-1")

    assert [f["code"] for f in outcome["failures"]] == ["INVALID_QUANTITY", "INVALID_QUANTITY"]
    assert len(outcome["reservations"]) == 1
    row = await ledger(db_session, 1, warehouse_id)
    assert row["quantity_reserved"] == 2


@pytest.mark.asyncio
async def test_default_warehouse_is_used_when_item_has_none(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=10)

    outcome = await reserve_items(db_session, [{"product_id": 1, "quantity": 3}], caller_id="user-1")

    assert outcome["reservations"][0]["warehouse_id"] == warehouse_id


@pytest.mark.asyncio
async def test_missing_default_warehouse_fails_item(db_session):
    outcome = await reserve_items(db_session, [{"product_id": 1, "quantity": 3}], caller_id="user-1")

    assert outcome["reservations"] == []
    assert outcome["failures"][0]["reason"] == "No warehouse specified and no default warehouse found"


@pytest.mark.asyncio
async def test_unstocked_product_reports_zero_available(db_session, warehouse_id):
    outcome = await reserve_items(db_session, [{"product_id": 42, "quantity": 1, "warehouse_id": warehouse_id}])

    failure = outcome["failures"][0]
    assert failure["reason"] == "Product not in stock"
    assert failure["available"] == 0


@pytest.mark.asyncio
async def test_reservation_writes_movement_and_expiry(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=10)
    before = now()

    outcome = await reserve_items(db_session, [{"product_id": 1, "quantity": 4, "warehouse_id": warehouse_id}],
                                  caller_id="user-1", duration_minutes=15, order_id="ORD-7")

    reservation = outcome["reservations"][0]
    minutes = (reservation["expires_at"] - before).total_seconds() / 60
    assert 14.9 < minutes < 15.1
    assert reservation["order_id"] == "ORD-7"

    movements = await list_movements(db_session, 1, warehouse_id, MovementType.RESERVATION)
    assert len(movements) == 1
    assert movements[0]["quantity"] == -4
    assert movements[0]["reason"] == "Stock reserved for order"
    assert movements[0]["status"] == "completed"
    assert movements[0]["reservation_id"] == reservation["id"]


@pytest.mark.asyncio
async def test_duration_out_of_range_aborts_before_ledger(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=10)

    for duration in (0, -1, 100000):
        with pytest.raises(InvalidDuration):
            await reserve_items(db_session, [{"product_id": 1, "quantity": 1, "warehouse_id": warehouse_id}],
                                duration_minutes=duration)

    row = await ledger(db_session, 1, warehouse_id)
    assert row["quantity_reserved"] == 0


@pytest.mark.asyncio
async def test_reserved_counter_matches_active_reservations(db_session, warehouse_id):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=50)
    await reserve_items(db_session, [{"product_id": 1, "quantity": q, "warehouse_id": warehouse_id}
                                     for q in (3, 5, 7)], caller_id="user-1")

    report = await reconcile_ledger(db_session, 1, warehouse_id)

    assert report["quantity_reserved"] == 15
    assert report["active_reservations_total"] == 15
    assert report["in_sync"] is True
