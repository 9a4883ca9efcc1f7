from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "darktides"
    POSTGRES_USER: str = "darktides"
    POSTGRES_PASSWORD: str = "darktides"
    # Full URL wins over the POSTGRES_* parts (sqlite:// in tests)
    DATABASE_URL: Optional[str] = None

    SERVICE_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Inventory holds
    RESERVATION_TTL_MINUTES: int = 15
    RESERVATION_CLEANUP_INTERVAL_SECONDS: int = 60
    RESERVATION_CLEANUP_ENABLED: bool = True

    # Checkout
    SHIPPING_COST: float = 0.0
    VENMO_HANDLE: str = "darktides"
    SITE_URL: str = "https://darktideslab.com"

    # Coinbase Commerce
    COINBASE_COMMERCE_API_KEY: str = ""
    COINBASE_API_URL: str = "https://api.commerce.coinbase.com"
    COINBASE_API_VERSION: str = "2018-03-22"
    COINBASE_WEBHOOK_SECRET: str = ""

    # Resend
    RESEND_API_KEY: str = ""
    RESEND_API_URL: str = "https://api.resend.com"
    EMAIL_FROM: str = "DarkTides Research <onboarding@resend.dev>"
    NOTIFICATION_EMAIL: str = ""
    CONTACT_EMAIL: str = "darktidesresearch@protonmail.com"
    NOTIFICATION_RETRY_ATTEMPTS: int = 2
    NOTIFICATION_RETRY_DELAY_SECONDS: float = 2.0

    # Back-office
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str = "change-me"
    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"
    JWT_EXPIRES_MINUTES: int = 60

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

@lru_cache
def get_settings() -> Settings:
    return Settings()
