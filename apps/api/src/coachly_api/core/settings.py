from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./coachly.db"
    database_echo: bool = False

    # Stripe configuration
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_timeout_seconds: float = 15.0
    stripe_max_network_retries: int = 2
    stripe_coupon_page_size: int = 100

    # Internal API security
    checkout_api_key: str = ""
    admin_api_key: str = ""

    # Promotions + commissions
    promo_code_length: int = 8
    default_commission_rate: Decimal = Decimal("10")
    default_currency: str = "usd"

    # Withdrawals
    withdrawal_minimum_amount: Decimal = Decimal("10.00")
    payout_currency: str = "usd"
    payout_statement_descriptor: str = "COACHLY PAYOUT"
    # A processing claim older than this may be resumed with the same idempotency key
    withdrawal_payout_lease_seconds: int = 300

    # Stalled payout recovery worker
    payout_recovery_worker_enabled: bool = False
    payout_recovery_interval_seconds: int = 300
    payout_recovery_batch_size: int = 25

    # Coupon mirror reconciliation worker
    coupon_sync_worker_enabled: bool = False
    coupon_sync_interval_seconds: int = 300
    coupon_sync_batch_size: int = 25
    coupon_sync_max_attempts: int = 10

    # Email / notification settings
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    smtp_sender_email: str | None = None

    # Tracing (standard OTEL_* variable names)
    service_name: str = "coachly-commerce-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_console_exporter: bool = False

    @field_validator("default_currency", "payout_currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        return value.strip().lower()


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
