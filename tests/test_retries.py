import pytest
from stockreserve.common.retries import backoff_delay, retry_conflicting_items


def _conflict(product_id, qty):
    return {"product_id": product_id, "warehouse_id": 1, "code": "VERSION_CONFLICT",
            "reason": "Inventory update failed - possible concurrent modification", "requested": qty}


@pytest.mark.asyncio
async def test_only_conflicting_items_are_resubmitted():
    calls = []

    async def submit(items):
        calls.append([i["product_id"] for i in items])
        if len(calls) == 1:
            return {"reservations": [{"product_id": 1, "quantity": 2}],
                    "failures": [_conflict(2, 3),
                                 {"product_id": 3, "warehouse_id": 1, "code": "INSUFFICIENT_STOCK",
                                  "reason": "Insufficient stock", "available": 0, "requested": 1}]}
        return {"reservations": [{"product_id": items[0]["product_id"], "quantity": items[0]["quantity"]}],
                "failures": []}

    outcome = await retry_conflicting_items(submit, [{"product_id": p, "quantity": 1} for p in (1, 2, 3)],
                                            attempts=3, base_delay=0.001)

    assert calls == [[1, 2, 3], [2]]
    assert [r["product_id"] for r in outcome["reservations"]] == [1, 2]
    assert [f["code"] for f in outcome["failures"]] == ["INSUFFICIENT_STOCK"]


@pytest.mark.asyncio
async def test_gives_up_after_the_attempt_budget():
    calls = 0

    async def submit(items):
        nonlocal calls
        calls += 1
        return {"reservations": [], "failures": [_conflict(1, 2)]}

    outcome = await retry_conflicting_items(submit, [{"product_id": 1, "quantity": 2}], attempts=3, base_delay=0.001)

    assert calls == 3
    assert outcome["failures"][0]["code"] == "VERSION_CONFLICT"


@pytest.mark.asyncio
async def test_backoff_is_capped():
    assert backoff_delay(1, 0.1, 2.0, 1.0) == pytest.approx(0.1)
    assert backoff_delay(3, 0.1, 2.0, 1.0) == pytest.approx(0.4)
    assert backoff_delay(10, 0.1, 2.0, 1.0) == 1.0
