from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal

from pydantic import AnyHttpUrl, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


@dataclass(frozen=True)
class PixProviderConfig:
    """Connection details for the PIX provider, injected into the client."""

    base_url: str
    token: str
    timeout_seconds: float = 30.0
    charge_expiration_seconds: int = 3600


@dataclass(frozen=True)
class CheckoutTimings:
    poll_interval_seconds: float = 10.0
    countdown_tick_seconds: float = 1.0
    default_countdown_seconds: int = 3600
    session_retention_seconds: float = 900.0
    sweep_interval_seconds: float = 60.0


class Settings(BaseSettings):
    """Application settings loaded from environment variables with validation."""

    model_config = SettingsConfigDict(
        env_file=(str(Path(__file__).resolve().parents[1] / ".env"), ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    app_name: str = Field(default="Manuflix Checkout API", alias="APP_NAME")
    app_env: Literal["development", "staging", "production", "test"] = Field(
        default="production",
        alias="APP_ENV",
    )
    app_debug: bool = Field(default=False, alias="APP_DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    cors_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["http://localhost:5173"],
        alias="CORS_ORIGINS",
    )

    database_url: str = Field(alias="DATABASE_URL")

    supabase_jwt_secret: SecretStr = Field(alias="SUPABASE_JWT_SECRET")

    pushinpay_base_url: AnyHttpUrl = Field(
        default="https://api.pushinpay.com.br/api",
        alias="PUSHINPAY_BASE_URL",
    )
    pushinpay_token: SecretStr = Field(alias="PUSHINPAY_TOKEN")
    pushinpay_timeout_seconds: float = Field(default=30.0, gt=0, le=120, alias="PUSHINPAY_TIMEOUT_SECONDS")
    pix_charge_expiration_seconds: int = Field(
        default=3600, ge=60, le=86400, alias="PIX_CHARGE_EXPIRATION_SECONDS"
    )
    pix_webhook_token: SecretStr = Field(alias="PIX_WEBHOOK_TOKEN")

    checkout_poll_interval_seconds: float = Field(
        default=10.0, gt=0, alias="CHECKOUT_POLL_INTERVAL_SECONDS"
    )
    checkout_countdown_tick_seconds: float = Field(
        default=1.0, gt=0, alias="CHECKOUT_COUNTDOWN_TICK_SECONDS"
    )
    checkout_default_countdown_seconds: int = Field(
        default=3600, ge=1, alias="CHECKOUT_DEFAULT_COUNTDOWN_SECONDS"
    )
    checkout_session_retention_seconds: float = Field(
        default=900.0, ge=0, alias="CHECKOUT_SESSION_RETENTION_SECONDS"
    )
    checkout_sweep_interval_seconds: float = Field(
        default=60.0, gt=0, alias="CHECKOUT_SWEEP_INTERVAL_SECONDS"
    )

    @field_validator("api_v1_prefix")
    @classmethod
    def validate_api_prefix(cls, value: str) -> str:
        """Ensure the API prefix starts with a slash and has no trailing slash."""
        normalized = value.strip()
        if not normalized.startswith("/"):
            raise ValueError("API_V1_PREFIX must start with '/'.")
        if len(normalized) > 1 and normalized.endswith("/"):
            normalized = normalized.rstrip("/")
        return normalized

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value: str | list[str]) -> list[str]:
        """Support comma-separated CORS origins from environment variables."""
        if isinstance(value, str):
            if not value.strip():
                return []
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, value: str) -> str:
        """Accept the Supabase Postgres pooler URL or a local SQLite file."""
        lowered = value.lower()
        allowed = ("postgresql://", "postgresql+psycopg2://", "sqlite://")
        if not lowered.startswith(allowed):
            raise ValueError("DATABASE_URL must start with postgresql://, postgresql+psycopg2:// or sqlite://")
        return value

    def pix_provider_config(self) -> PixProviderConfig:
        return PixProviderConfig(
            base_url=str(self.pushinpay_base_url).rstrip("/"),
            token=self.pushinpay_token.get_secret_value(),
            timeout_seconds=self.pushinpay_timeout_seconds,
            charge_expiration_seconds=self.pix_charge_expiration_seconds,
        )

    def checkout_timings(self) -> CheckoutTimings:
        return CheckoutTimings(
            poll_interval_seconds=self.checkout_poll_interval_seconds,
            countdown_tick_seconds=self.checkout_countdown_tick_seconds,
            default_countdown_seconds=self.checkout_default_countdown_seconds,
            session_retention_seconds=self.checkout_session_retention_seconds,
            sweep_interval_seconds=self.checkout_sweep_interval_seconds,
        )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()
