from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "sqlite:///./caterer_billing.db"
    DB_ECHO: bool = False

    LOG_LEVEL: str = "INFO"

    # Remaining batch stock at or below this is treated as exhausted
    INVENTORY_EPSILON: Decimal = Decimal("0.001")

    CORS_ORIGINS: list[str] = ["http://localhost:3000"]


settings = Settings()
