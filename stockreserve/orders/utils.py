import hashlib
import hmac
from typing import Optional
from stockreserve.orders.constants import CONFIRM_ACTIONS, RELEASE_ACTIONS

CONFIRM = "confirm"
RELEASE = "release"
IGNORE = "ignore"


def classify_payment_action(action: Optional[str]) -> str:
    """Map a gateway action onto what happens to the order's reservations.

    paid_pending and unknown actions leave the holds alone; the reservation either
    gets a later final callback or runs into its expiry.
    """
    normalized = (action or "").strip().lower()
    if normalized in CONFIRM_ACTIONS:
        return CONFIRM
    if normalized in RELEASE_ACTIONS:
        return RELEASE
    return IGNORE


def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def signature_matches(body: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(body, secret), signature.strip().lower())
