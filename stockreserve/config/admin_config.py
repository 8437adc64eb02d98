from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "dev"                # "dev" / "staging" / "prod"
    SERVICE_NAME: str = "stockreserve"
    ENABLE_ADMIN: bool = True       # False -> admin routes not mounted
    ADMIN_ROLE: str = "admin"

    class Config:
        env_file = ".env"
        extra="ignore"

admin_config = Settings()
