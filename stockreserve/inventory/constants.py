from stockreserve.common.logging_setup import get_logger

logger = get_logger("stockreserve.inventory")

NOT_STOCKED_REASON = "Product not in stock"
NO_WAREHOUSE_REASON = "No warehouse specified and no default warehouse found"
