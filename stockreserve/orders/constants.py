from stockreserve.common.logging_setup import get_logger

logger = get_logger("stockreserve.orders")

NETOPIA_PROVIDER = "netopia"
SIGNATURE_HEADER = "X-Netopia-Signature"

CONFIRM_ACTIONS = frozenset({"confirmed", "paid"})
RELEASE_ACTIONS = frozenset({"canceled", "cancelled", "failed", "credit"})
