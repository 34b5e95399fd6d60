from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration read from environment variables."""

    # General
    api_bearer_token: str = "testtoken"
    # Basic auth protecting /docs, /redoc and /openapi.json
    api_basic_username: str = "admin"
    api_basic_password: str = "admin"
    # Default provider override (PAYMENT_PROVIDER)
    payment_provider: str = "myfatoorah"
    provider_timeout_seconds: float = 30.0
    provider_max_connections: int = 50
    provider_max_keepalive_connections: int = 10

    # MyFatoorah (invoice gateway)
    myfatoorah_api_key: str = ""
    myfatoorah_api_url: str = "https://apitest.myfatoorah.com/v2/"
    myfatoorah_callback_url: str = ""
    myfatoorah_error_url: str = ""
    myfatoorah_invoice_ttl_minutes: int = 60
    myfatoorah_tz: str = "Asia/Kuwait"
    myfatoorah_ttl_skew_seconds: int = 30
    myfatoorah_webhook_secret: str = ""

    # Stripe (payment intents)
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_api_version: str = "2023-10-16"
    stripe_success_url: str = ""
    stripe_cancel_url: str = ""

    # PayMob (wallet gateway)
    paymob_api_key: str = ""
    paymob_secret_key: str = ""
    paymob_country: str = "EGYPT"
    paymob_base_url: str = ""
    paymob_intention_api_url: str = ""
    paymob_integration_id: int | None = None
    paymob_iframe_id: str = ""
    paymob_callback_url: str = ""
    paymob_notification_url: str = ""
    paymob_hmac_secret: str = ""
    paymob_default_currency: str = ""
    paymob_fallback_phone: str = "+201000000000"

    # Reconciliation
    reconciliation_enabled: bool = True
    reconciliation_timeout_minutes: int = 15
    reconciliation_interval_minutes: int = 3
    reconciliation_batch_size: int = 100
    cache_sweep_interval_minutes: int = 20
    cache_max_entries: int = 1000

    # Logging
    log_level: str = "INFO"

    # Notifications
    notification_url: str = ""

    # Database (PostgreSQL)
    db_host: str = ""
    db_port: int = 5432
    db_user: str = ""
    db_password: str = ""
    db_name: str = ""
    db_schema: str = "payments"
    db_max_connections: int = 10

    @property
    def db_enabled(self) -> bool:
        return bool(self.db_host and self.db_user and self.db_name)

    @property
    def db_dsn(self) -> str:
        if not self.db_enabled:
            return ""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Pydantic v2 settings config
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
