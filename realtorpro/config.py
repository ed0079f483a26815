from __future__ import annotations

import secrets
from decimal import Decimal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "РиелторПро API"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5
    auto_create_schema: bool = False

    # YooKassa
    yookassa_shop_id: str | None = None
    yookassa_secret_key: str | None = None
    yookassa_api_url: str = "https://api.yookassa.ru/v3"
    yookassa_timeout_seconds: float = 10.0
    yookassa_webhook_secret: str | None = None
    webhook_signature_header: str = "Me-Signature"

    # Plans
    subscription_price_monthly: Decimal = Decimal("2000.00")
    subscription_price_yearly: Decimal = Decimal("16800.00")
    subscription_currency: str = "RUB"
    public_base_url: str | None = None
    default_trial_duration_minutes: int = 7 * 24 * 60

    # Status cache (seconds)
    status_cache_ttl_active: int = 1800
    status_cache_ttl_trial: int = 60
    status_cache_ttl_other: int = 5
    status_cache_max_entries: int = 10_000

    # Access gate
    auth_cookie_name: str = "auth-token"
    access_gate_cache_ttl_seconds: int = 1800
    access_gate_timeout_seconds: float = 3.0
    access_gate_fail_open: bool = True
    share_gate_fail_open: bool = True
    status_cookie_name: str = "subscription-status"
    status_expiry_cookie_name: str = "subscription-status-expires"

    # Webhook queue
    webhook_queue_max_size: int = 1000
    webhook_max_attempts: int = 5
    webhook_retry_base_delay: float = 1.0
    webhook_retry_max_delay: float = 30.0

    # Cron
    cron_secret_key: str | None = None

    # Security
    secret_key: str = ""  # Will be generated if empty
    cors_origins: list[str] = []  # Empty by default for security
    allowed_hosts: list[str] = ["localhost", "127.0.0.1"]

    # Sentry
    sentry_dsn: str | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "realtorpro"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125
    metrics_schema_version: str = "realtorpro.v1"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Generate a random secret key if not provided
        if not self.secret_key:
            self.secret_key = secrets.token_urlsafe(32)

    @property
    def webhook_secret(self) -> str | None:
        """Shared HMAC secret for webhook signatures; falls back to the shop secret key."""
        return self.yookassa_webhook_secret or self.yookassa_secret_key

    @property
    def gateway_configured(self) -> bool:
        return bool(self.yookassa_shop_id and self.yookassa_secret_key)

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
