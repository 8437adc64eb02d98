from stockreserve.common.logging_setup import get_logger

logger = get_logger("stockreserve.common")

REQUEST_ID_HEADER = "X-Request-ID"
