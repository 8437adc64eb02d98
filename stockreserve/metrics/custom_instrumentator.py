from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator

instrumentator = Instrumentator(
    should_group_status_codes=False,
    should_ignore_untemplated=True,
    excluded_handlers=["/metrics", "/api/v1/health"],
)

RESERVATION_ITEMS = Counter(
    "stock_reservation_items",
    "Reservation line items processed, by outcome",
    ["outcome"],
)

RESERVATION_TRANSITIONS = Counter(
    "stock_reservation_transitions",
    "Reservation status transitions applied",
    ["status"],
)

EXPIRED_RELEASED = Counter(
    "stock_expired_released",
    "Reservations released by the expiry sweeper",
)
