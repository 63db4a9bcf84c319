# backend/app/core/config.py
import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_EXPANSION_WEEKS,
    DEFAULT_PAYMENT_INTERVAL_HOURS,
    MAX_BOOKING_MINUTES,
    MIN_BOOKING_MINUTES,
)


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        description="Deployment environment name",
    )
    is_testing: bool = Field(default=False, description="Set by the test harness")

    # Database
    database_url: str = Field(
        default="sqlite:///./tutorhub.db",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = False

    # Redis (idempotency claims + scheduling mutex)
    redis_url: str = Field(default="redis://localhost:6379/0")
    namespace: str = Field(
        default="tutorhub",
        description="Key prefix shared by every Redis key this service writes",
    )
    idempotency_backend: Literal["redis", "memory"] = Field(
        default="redis",
        description="Backing store for idempotency claims",
    )
    idempotency_ttl_seconds: int = Field(default=3600, ge=1)
    schedule_lock_ttl_seconds: int = Field(default=30, ge=1)
    schedule_lock_wait_seconds: float = Field(default=2.0, ge=0)
    schedule_lock_poll_seconds: float = Field(default=0.05, gt=0)

    # Scheduling
    schedule_timezone: str = Field(
        default="UTC",
        description="Timezone used to turn slot wall-clock times into instants",
    )
    default_expansion_weeks: int = Field(default=DEFAULT_EXPANSION_WEEKS, ge=1)
    min_booking_minutes: int = Field(default=MIN_BOOKING_MINUTES, ge=1)
    max_booking_minutes: int = Field(default=MAX_BOOKING_MINUTES, ge=1)

    # Ledger
    default_payment_interval: int = Field(default=DEFAULT_PAYMENT_INTERVAL_HOURS, ge=1)
    default_hourly_rate: Decimal = Field(default=Decimal("50.00"), ge=0)
    default_currency: str = Field(default="USD", min_length=3, max_length=3)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["text", "json"] = Field(default="text")

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("default_currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported log level: {value}")
        return normalized

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
