import asyncio
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from sqlalchemy.exc import DBAPIError, OperationalError
from stockreserve.common.constants import logger


def is_recoverable_exception(exc: BaseException) -> bool:
    if isinstance(exc, asyncio.CancelledError):
        return False
    # common transient-ish exceptions
    if isinstance(exc, (TimeoutError, ConnectionError, OperationalError)):
        return True
    if isinstance(exc, DBAPIError):
        if getattr(exc, "connection_invalidated", False):
            return True
        orig = getattr(exc, "orig", None)
        if orig is not None:
            name = type(orig).__name__.lower()
            if any(k in name for k in ("timeout", "connection", "deadlock", "serialization")):
                return True
    return False


async def _sleep_with_jitter(delay: float, jitter: float) -> None:
    jitter_val = random.uniform(-jitter * delay, jitter * delay)
    await asyncio.sleep(max(0.0, delay + jitter_val))


def backoff_delay(attempt: int, base_delay: float, factor: float, max_delay: float) -> float:
    return min(max_delay, base_delay * (factor ** (attempt - 1)))


async def retry_conflicting_items(
    submit: Callable[[List[Dict[str, Any]]], Awaitable[Dict[str, List[Dict[str, Any]]]]],
    items: Sequence[Dict[str, Any]],
    *,
    attempts: int = 3,
    base_delay: float = 0.05,
    factor: float = 2.0,
    max_delay: float = 1.0,
    jitter: float = 0.15,
    is_retryable: Optional[Callable[[Dict[str, Any]], bool]] = None,
) -> Dict[str, List[Dict[str, Any]]]:
    """Submit a batch and re-submit only the items whose failure is retryable.

    `submit` takes a list of items and returns {"reservations": [...], "failures": [...]}.
    Each failure must carry enough to rebuild its item (product_id, warehouse_id, requested).
    Successful reservations from every round are accumulated; the failures from the
    last round are what the caller gets back.
    """
    if is_retryable is None:
        is_retryable = lambda failure: failure.get("code") == "VERSION_CONFLICT"

    outcome = await submit(list(items))
    reservations = list(outcome["reservations"])
    failures = list(outcome["failures"])

    for attempt in range(1, attempts):
        retry_items = [
            {"product_id": f["product_id"], "warehouse_id": f.get("warehouse_id"), "quantity": f["requested"]}
            for f in failures if is_retryable(f) and f.get("requested")
        ]
        if not retry_items:
            break

        delay = backoff_delay(attempt, base_delay, factor, max_delay)
        logger.debug("reservation.conflict_retry", extra={"attempt": attempt, "items": len(retry_items), "delay": delay})
        await _sleep_with_jitter(delay, jitter)

        failures = [f for f in failures if not (is_retryable(f) and f.get("requested"))]
        outcome = await submit(retry_items)
        reservations.extend(outcome["reservations"])
        failures.extend(outcome["failures"])

    return {"reservations": reservations, "failures": failures}
