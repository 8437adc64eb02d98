from stockreserve.common.logging_setup import get_logger

logger = get_logger("stockreserve.movements")

DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 500
