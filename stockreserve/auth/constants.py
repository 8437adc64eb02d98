from stockreserve.config.settings import config_settings
from stockreserve.common.logging_setup import get_logger

logger = get_logger("stockreserve.auth")

ACCESS_TOKEN_TTL_SECONDS = int(config_settings.ACCESS_TOKEN_EXPIRE_MINUTES) * 60
