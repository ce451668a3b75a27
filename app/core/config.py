import os
import logging
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)

class Settings(BaseSettings):
    # --- APP BASICS ---
    app_name: str = "Storefront API"
    environment: str = "development"
    allowed_hosts: str = "*"

    # --- DATABASE & REDIS ---
    database_url: str
    redis_url: str = "redis://localhost:6379/0"

    # --- SECURITY ---
    secret_key: str
    access_token_expire_minutes: int = 30
    jwt_algorithm: str = "HS256"

    # --- PAYMENTS (Razorpay) ---
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_webhook_secret: str = ""
    razorpay_api_base: str = "https://api.razorpay.com"
    payment_currency: str = "INR"
    currency_minor_unit: int = 100

    # --- ORDERS ---
    order_number_prefix: str = "SFR"
    order_number_attempts: int = 3


    def __init__(self, **values):
        super().__init__(**values)

        # Inside a compose network "localhost" is the container itself
        is_docker = os.path.exists("/.dockerenv")

        if is_docker:
            logger.info("Docker detected. Routing database and redis traffic to service names.")

            self.database_url = self.database_url.replace("localhost", "storefront_db").replace("127.0.0.1", "storefront_db")
            self.redis_url = self.redis_url.replace("localhost", "redis").replace("127.0.0.1", "redis")

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url


    model_config = SettingsConfigDict(
        # Process environment always overrides the .env files
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="allow",
        case_sensitive=False
    )

settings = Settings()
