from stockreserve.common.logging_setup import get_logger

logger = get_logger("stockreserve.workers")
