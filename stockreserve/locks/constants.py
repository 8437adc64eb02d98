from stockreserve.common.logging_setup import get_logger

logger = get_logger("stockreserve.locks")

SWEEPER_LOCK_KEY = "stock:expiry-sweeper"


def order_payment_lock_key(order_id: str) -> str:
    return f"order:{order_id}:payment"
