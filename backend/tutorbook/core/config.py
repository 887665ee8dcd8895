# backend/tutorbook/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_BACKEND_ROOT = Path(__file__).resolve().parents[2]

load_dotenv(_BACKEND_ROOT / ".env", override=False)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    environment: Literal["development", "test", "production"] = "development"
    log_level: str = Field(default="INFO", description="Root log level")

    # Auth
    secret_key: SecretStr = Field(
        default=SecretStr("dev-secret-key-change-me"),
        description="Secret key for JWT tokens",
    )
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 720  # 12 hours

    # Database
    database_url: str = Field(
        default=f"sqlite:///{_BACKEND_ROOT / 'tutorbook.db'}",
        description="SQLAlchemy database URL",
    )

    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Base URL used for checkout redirects",
    )

    # Stripe Configuration
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe secret key for backend API calls",
    )
    stripe_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Signing secret for the Stripe webhook endpoint",
    )
    stripe_currency: str = Field(default="usd", description="Default currency for payments")

    # Lesson booking rules
    minimum_charge_cents: int = Field(
        default=100, description="Smallest amount accepted for a payment hold"
    )
    modification_window_hours: int = Field(
        default=24,
        description="Cancels and reschedules require at least this many hours of notice",
    )
    checkout_session_ttl_minutes: int = Field(
        default=30, description="Lifetime of a hosted checkout session"
    )
    capture_amount_from_price: bool = Field(
        default=True,
        description="Capture the lesson price instead of the full authorized amount",
    )
    default_lesson_price_cents: int = Field(default=5000, ge=0)
    default_lesson_duration_minutes: int = Field(default=60, ge=1)

    # Maintenance
    backfill_batch_size: int = Field(default=500, ge=1)
    backfill_max_concurrency: int = Field(
        default=8, ge=1, description="Worker threads used by the created_at backfill"
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("stripe_currency")
    @classmethod
    def _lowercase_currency(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key.get_secret_value())

    def webhook_secret(self) -> Optional[str]:
        secret = self.stripe_webhook_secret.get_secret_value()
        return secret or None


settings = Settings()
