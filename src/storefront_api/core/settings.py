from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production", "test"] = "development"
    database_url: str = "sqlite+aiosqlite:///./storefront.db"

    # Delivery pricing
    delivery_fee: Decimal = Decimal("8.00")
    subscription_free_delivery_threshold: Decimal = Decimal("150.00")

    # Subscription + loyalty
    subscription_price: Decimal = Decimal("40.00")
    loyalty_point_value: Decimal = Decimal("0.01")
    loyalty_points_per_dollar: int = 1

    # NETS QR gateway (asynchronous rail)
    nets_api_key: str = ""
    nets_project_id: str = ""
    nets_request_url: str = "https://sandbox.nets.openapipaas.com/api/v1/common/payments/nets-qr/request"
    nets_query_url: str = "https://sandbox.nets.openapipaas.com/api/v1/common/payments/nets-qr/query"
    nets_txn_prefix: str = "sandbox_nets|m|"
    nets_timeout_seconds: float = 15.0

    # PayPal gateway (synchronous rail)
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_api_base: str = "https://api-m.sandbox.paypal.com"
    paypal_currency: str = "SGD"
    paypal_timeout_seconds: float = 15.0

    # Confirmation reconciler
    payment_poll_interval_seconds: float = 5.0
    payment_poll_max_attempts: int = 60
    pending_payment_ttl_seconds: int = 900

    # Pending payment sweeper
    payment_sweeper_enabled: bool = False
    payment_sweeper_interval_seconds: int = 300
    payment_record_retention_seconds: int = 7 * 24 * 3600

    # Tracing
    otel_enabled: bool = True
    otel_excluded_urls: list[str] = Field(default_factory=lambda: ["/healthz"])

    @field_validator("otel_excluded_urls", mode="before")
    @classmethod
    def _parse_excluded_urls(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
