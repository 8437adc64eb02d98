import json
import uuid
from datetime import timedelta
import pytest
from conftest import ledger, seed_inventory, url_prefix
from stockreserve.config.settings import config_settings
from stockreserve.common.utils import now
from stockreserve.db.connection import async_session
from stockreserve.locks.constants import order_payment_lock_key
from stockreserve.locks.repository import acquire_lock
from stockreserve.orders.constants import NETOPIA_PROVIDER
from stockreserve.orders.repository import get_webhook_event
from stockreserve.orders.utils import CONFIRM, IGNORE, RELEASE, classify_payment_action, sign_payload
from stockreserve.reservations.repository import list_reservations
from stockreserve.reservations.services import cancel_reservation, release_expired_reservations

webhook_path = config_settings.NETOPIA_WEBHOOK_PATH


async def _deliver(ac_client, payload, signature=None):
    body = json.dumps(payload).encode()
    sig = signature if signature is not None else sign_payload(body, config_settings.NETOPIA_WEBHOOK_SECRET)
    return await ac_client.post(webhook_path, content=body,
                                headers={"Content-Type": "application/json", "X-Netopia-Signature": sig})


async def _reserve_for_order(ac_client, db_session, warehouse_id, user_headers, order_id="ORD-1"):
    await seed_inventory(db_session, 1, warehouse_id, on_hand=100)
    await seed_inventory(db_session, 2, warehouse_id, on_hand=20)
    response = await ac_client.post(f"{url_prefix}/stock-reserve", headers=user_headers, json={
        "items": [{"product_id": 1, "quantity": 10}, {"product_id": 2, "quantity": 4}],
        "order_id": order_id,
    })
    assert response.status_code == 200
    return [r["id"] for r in response.json()["reservations"]]


@pytest.mark.asyncio
async def test_action_mapping():
    assert classify_payment_action("confirmed") == CONFIRM
    assert classify_payment_action("PAID") == CONFIRM
    assert classify_payment_action("canceled") == RELEASE
    assert classify_payment_action("credit") == RELEASE
    assert classify_payment_action("paid_pending") == IGNORE
    assert classify_payment_action(None) == IGNORE


@pytest.mark.asyncio
async def test_bad_signature_is_rejected(ac_client, db_session, warehouse_id, user_headers):
    await _reserve_for_order(ac_client, db_session, warehouse_id, user_headers)

    response = await _deliver(ac_client, {"event_id": "evt-1", "order_id": "ORD-1", "action": "paid"},
                              signature="deadbeef")

    assert response.status_code == 403
    assert (await ledger(db_session, 1, warehouse_id))["quantity_reserved"] == 10


@pytest.mark.asyncio
async def test_missing_fields_is_bad_request(ac_client):
    response = await _deliver(ac_client, {"event_id": "evt-1", "action": "paid"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_paid_confirms_linked_reservations_once(ac_client, db_session, warehouse_id, user_headers):
    ids = await _reserve_for_order(ac_client, db_session, warehouse_id, user_headers)

    response = await _deliver(ac_client, {"event_id": "evt-1", "order_id": "ORD-1", "action": "confirmed"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert sorted(data["confirmed"]) == sorted(ids)
    assert data["errors"] == []
    assert (await ledger(db_session, 1, warehouse_id))["quantity_on_hand"] == 90
    assert (await ledger(db_session, 2, warehouse_id))["quantity_on_hand"] == 16

    response = await _deliver(ac_client, {"event_id": "evt-1", "order_id": "ORD-1", "action": "confirmed"})
    assert response.status_code == 200
    assert response.json()["note"] == "already processed"
    assert (await ledger(db_session, 1, warehouse_id))["quantity_on_hand"] == 90


@pytest.mark.asyncio
async def test_failed_payment_releases_holds(ac_client, db_session, warehouse_id, user_headers):
    ids = await _reserve_for_order(ac_client, db_session, warehouse_id, user_headers)

    response = await _deliver(ac_client, {"event_id": "evt-2", "order_id": "ORD-1", "action": "failed"})

    assert response.status_code == 200
    assert sorted(response.json()["data"]["released"]) == sorted(ids)
    row = await ledger(db_session, 1, warehouse_id)
    assert row["quantity_reserved"] == 0
    assert row["quantity_on_hand"] == 100


@pytest.mark.asyncio
async def test_pending_payment_leaves_reservations_active(ac_client, db_session, warehouse_id, user_headers):
    await _reserve_for_order(ac_client, db_session, warehouse_id, user_headers)

    response = await _deliver(ac_client, {"event_id": "evt-3", "order_id": "ORD-1", "action": "paid_pending"})

    assert response.status_code == 200
    assert response.json()["data"]["decision"] == "ignore"
    active = await list_reservations(db_session, order_id="ORD-1", status="active")
    assert len(active) == 2


@pytest.mark.asyncio
async def test_concurrent_callback_for_same_order_is_told_to_retry(ac_client, db_session, warehouse_id, user_headers):
    await _reserve_for_order(ac_client, db_session, warehouse_id, user_headers)
    await acquire_lock(async_session, order_payment_lock_key("ORD-1"), "netopia:evt-other", 30)

    response = await _deliver(ac_client, {"event_id": "evt-4", "order_id": "ORD-1", "action": "paid"})

    assert response.status_code == 409
    assert (await ledger(db_session, 1, warehouse_id))["quantity_reserved"] == 10


@pytest.mark.asyncio
async def test_paid_after_hold_expired_is_reported_as_failed(ac_client, db_session, warehouse_id, user_headers):
    ids = await _reserve_for_order(ac_client, db_session, warehouse_id, user_headers, order_id="ORD-9")
    assert await release_expired_reservations(db_session, ts=now() + timedelta(hours=1)) == 2

    response = await _deliver(ac_client, {"event_id": "evt-late", "order_id": "ORD-9", "action": "paid"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["confirmed"] == []
    assert sorted(e["reservation_id"] for e in data["errors"]) == sorted(ids)
    assert {e["code"] for e in data["errors"]} == {"INVALID_STATE"}

    ev = await get_webhook_event(db_session, NETOPIA_PROVIDER, "evt-late")
    await db_session.rollback()
    assert ev["status"] == "failed"
    row = await ledger(db_session, 1, warehouse_id)
    assert row["quantity_on_hand"] == 100
    assert row["quantity_reserved"] == 0


@pytest.mark.asyncio
async def test_release_skips_holds_that_are_already_gone(ac_client, db_session, warehouse_id, user_headers):
    ids = await _reserve_for_order(ac_client, db_session, warehouse_id, user_headers)
    await cancel_reservation(db_session, uuid.UUID(ids[0]))

    response = await _deliver(ac_client, {"event_id": "evt-5", "order_id": "ORD-1", "action": "canceled"})

    data = response.json()["data"]
    assert data["released"] == [ids[1]]
    assert data["errors"] == []
    ev = await get_webhook_event(db_session, NETOPIA_PROVIDER, "evt-5")
    await db_session.rollback()
    assert ev["status"] == "processed"
