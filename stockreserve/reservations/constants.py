from stockreserve.common.logging_setup import get_logger

logger = get_logger("stockreserve.reservations")

RESERVED_REASON = "Stock reserved for order"
CONFIRMED_REASON = "Reservation confirmed"
CANCELLED_REASON = "Reservation cancelled"
EXPIRED_REASON = "Reservation expired"
UNEXPECTED_REASON = "Unexpected error"
