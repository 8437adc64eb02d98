from pydantic_settings import BaseSettings

class Settings(BaseSettings):

    DATABASE_URL : str = "sqlite+aiosqlite:///./stockreserve.db"
    DB_ECHO : bool = False
    SQLITE_BUSY_TIMEOUT : float = 30.0
    AUTO_CREATE_TABLES : bool = True

    JWT_SECRET : str = "dev-only-secret"
    JWT_ALGO : str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES : int = 30

    RESERVATION_DURATION_MINUTES : float = 15
    MAX_RESERVATION_DURATION_MINUTES : float = 1440
    CONFLICT_RETRY_ATTEMPTS : int = 3
    CONFLICT_RETRY_BASE_DELAY : float = 0.05

    ENABLE_EXPIRY_SWEEPER : bool = True
    SWEEPER_INTERVAL_SECONDS : float = 60
    SWEEPER_BATCH_SIZE : int = 200
    SWEEPER_LOCK_TTL_SECONDS : int = 120
    LOCK_DEFAULT_TTL_SECONDS : int = 30

    NETOPIA_WEBHOOK_SECRET : str = "dev-netopia-secret"
    NETOPIA_WEBHOOK_PATH : str = "/api/v1/webhooks/netopia"

    class Config:
        env_file = ".env"
        extra="ignore"

config_settings = Settings()
