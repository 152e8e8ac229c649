"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.

Reconciliation code never reads ``settings`` directly: it receives a frozen
``ReconcilerConfig`` built once from the settings and passed down.
"""

import sys
from dataclasses import dataclass

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class ProviderConfig(BaseModel):
    """
    Per-vendor configuration.

    Selector-code mappings translate internal codes (e.g. "whatsapp") into the
    vendor's own codes and take precedence over the provider's built-in
    tables. A code absent from both maps to itself.
    """

    enabled: bool = False
    api_key: str = ""
    base_url: str = ""
    service_codes: dict[str, str] = Field(default_factory=dict)
    country_codes: dict[str, str] = Field(default_factory=dict)

    @property
    def is_configured(self) -> bool:
        """Provider has credentials."""
        return bool(self.api_key)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "VendorBridge Reconciliation API"
    api_version: str = "0.1.0"
    api_description: str = "Order reconciliation engine for vendor-backed wallet purchases"

    # Security
    internal_api_key: str = ""  # Shared key for the storefront (X-API-Key)
    zendit_webhook_secret: str = ""  # Empty = webhook accepted unauthenticated (logged)

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "vendorbridge"

    # Vendors (FIVESIM__API_KEY, GRIZZLYSMS__ENABLED, ...)
    # Empty base_url falls back to the vendor default endpoint
    fivesim: ProviderConfig = ProviderConfig()
    grizzlysms: ProviderConfig = ProviderConfig()
    zendit: ProviderConfig = ProviderConfig()
    jap: ProviderConfig = ProviderConfig()

    # Vendor call timeouts (seconds)
    interactive_timeout_seconds: float = 5.0
    background_timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 3.0

    # Active polling
    poll_interval_seconds: int = 15
    smm_poll_interval_seconds: int = 300
    poll_retry_delay_seconds: int = 10
    poll_max_retries: int = 3
    poll_max_attempts: int = 80
    poll_claim_lease_seconds: int = 120  # claimed but unfinished checks become due again

    # Expiry sweep
    default_phone_expiry_minutes: int = 20
    order_age_ceiling_minutes: int = 60
    stale_recheck_minutes: int = 1440
    sweep_batch_size: int = 100
    sweep_interval_seconds: int = 300

    # Worker
    worker_concurrency: int = 10
    worker_idle_seconds: float = 2.0

    # Terminal-state notifications; empty = log only
    notification_url: str = ""

    default_currency: str = "USD"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.poll_max_retries < 0:
            errors.append("POLL_MAX_RETRIES cannot be negative")

        if self.interactive_timeout_seconds > self.background_timeout_seconds:
            errors.append(
                "INTERACTIVE_TIMEOUT_SECONDS must not exceed BACKGROUND_TIMEOUT_SECONDS"
            )

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    def provider_configs(self) -> dict[str, ProviderConfig]:
        """Vendor configs keyed by provider identifier."""
        return {
            "5sim": self.fivesim,
            "grizzlysms": self.grizzlysms,
            "zendit": self.zendit,
            "jap": self.jap,
        }


@dataclass(frozen=True)
class ReconcilerConfig:
    """Immutable tunables handed to every reconciliation component."""

    interactive_timeout_seconds: float = 5.0
    background_timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 3.0
    poll_interval_seconds: int = 15
    smm_poll_interval_seconds: int = 300
    poll_retry_delay_seconds: int = 10
    poll_max_retries: int = 3
    poll_max_attempts: int = 80
    poll_claim_lease_seconds: int = 120
    default_phone_expiry_minutes: int = 20
    order_age_ceiling_minutes: int = 60
    stale_recheck_minutes: int = 1440
    sweep_batch_size: int = 100
    webhook_secret: str = ""
    default_currency: str = "USD"

    def __post_init__(self) -> None:
        """Validate tunables."""
        if self.poll_interval_seconds <= 0:
            raise ValueError(f"Poll interval must be positive: {self.poll_interval_seconds}")
        if self.poll_claim_lease_seconds <= 0:
            raise ValueError(f"Claim lease must be positive: {self.poll_claim_lease_seconds}")
        if self.sweep_batch_size <= 0:
            raise ValueError(f"Sweep batch size must be positive: {self.sweep_batch_size}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReconcilerConfig":
        return cls(
            interactive_timeout_seconds=settings.interactive_timeout_seconds,
            background_timeout_seconds=settings.background_timeout_seconds,
            connect_timeout_seconds=settings.connect_timeout_seconds,
            poll_interval_seconds=settings.poll_interval_seconds,
            smm_poll_interval_seconds=settings.smm_poll_interval_seconds,
            poll_retry_delay_seconds=settings.poll_retry_delay_seconds,
            poll_max_retries=settings.poll_max_retries,
            poll_max_attempts=settings.poll_max_attempts,
            poll_claim_lease_seconds=settings.poll_claim_lease_seconds,
            default_phone_expiry_minutes=settings.default_phone_expiry_minutes,
            order_age_ceiling_minutes=settings.order_age_ceiling_minutes,
            stale_recheck_minutes=settings.stale_recheck_minutes,
            sweep_batch_size=settings.sweep_batch_size,
            webhook_secret=settings.zendit_webhook_secret,
            default_currency=settings.default_currency,
        )


# Global settings instance - validates at import time
settings = Settings()


def get_reconciler_config() -> ReconcilerConfig:
    """Reconciler config derived from the global settings."""
    return ReconcilerConfig.from_settings(settings)
