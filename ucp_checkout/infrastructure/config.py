"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from datetime import timedelta

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Database
    database_url: str = "postgresql+asyncpg://ucp:ucp_dev_password@db:5432/ucp"
    db_lock_timeout_ms: int = 2000
    max_write_attempts: int = 5

    # Cart & session lifecycle
    cart_ttl_seconds: int = 604800
    session_ttl_seconds: int = 86400
    cart_max_items: int = 100
    currency: str = "USD"
    currency_symbol: str = "$"
    web_checkout_url_template: str = "http://localhost:8000/checkout/pay/{order_ref}?session={session_id}"

    # Collaborators
    catalog_url: str = "http://catalog:8001"
    coupon_url: str = "http://coupons:8002"
    shipping_url: str = "http://shipping:8003"
    ledger_url: str = "http://ledger:8004"
    upstream_timeout_seconds: float = 10.0

    # Expiration sweeper
    sweeper_enabled: bool = True
    sweeper_interval_seconds: float = 300.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def cart_ttl(self) -> timedelta:
        return timedelta(seconds=self.cart_ttl_seconds)

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(seconds=self.session_ttl_seconds)


settings = Settings()
