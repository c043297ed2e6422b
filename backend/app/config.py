"""Configuration settings for the agentmarket backend."""

from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings

from agentmarket.config import CommerceConfig


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # JWT
    jwt_secret_key: str  # Required - no default for security
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 7  # 1 week

    # Storage: SQLite file, or in-memory when unset
    database_path: str | None = None

    # Commerce
    environment: str = "development"
    platform_fee_percent: Decimal = Decimal("10")
    callback_base_url: str = "http://localhost:8000"
    dispatch_timeout_seconds: float = 10.0
    payment_timeout_seconds: float = 4.0
    require_webhook_secret: bool | None = None  # None = required only in production
    low_balance_threshold: Decimal = Decimal("20")

    # Agents allowed to call maintenance and admin endpoints
    admin_agent_ids: list[str] = []

    # App
    debug: bool = False
    # CORS: Allowed origins for cross-origin requests
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model

    def commerce_config(self) -> CommerceConfig:
        """Commerce settings for the service layer."""
        return CommerceConfig(
            platform_fee_percent=self.platform_fee_percent,
            environment=self.environment,
            require_webhook_secret=self.require_webhook_secret,
            dispatch_timeout_seconds=self.dispatch_timeout_seconds,
            payment_timeout_seconds=self.payment_timeout_seconds,
            callback_base_url=self.callback_base_url,
            low_balance_threshold=self.low_balance_threshold,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
