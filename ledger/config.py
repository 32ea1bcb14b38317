"""
Environment-driven settings (pydantic-settings).

get_settings() is cached, so one Settings instance is shared per process.
These are process defaults only; the live payout rates and slot capacity are
read from the settings document inside each transaction.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="LEDGER_", case_sensitive=False)

    # Store
    transaction_max_attempts: int = Field(default=5, ge=1)
    transaction_base_delay_ms: int = Field(default=5, ge=0)
    transaction_max_delay_ms: int = Field(default=200, ge=0)

    # Premium settings document defaults
    premium_payout_percentage: Decimal = Decimal("0.90")
    standard_payout_percentage: Decimal = Decimal("0.50")
    max_premium_slots: int = 20

    # Payouts
    platform_fee_rate: Decimal = Decimal("0.10")
    payout_currency: str = "USD"

    # Moderation
    temporary_ban_days: int = 3

    # API
    cors_origins: list[str] = ["*"]
    scheduler_token: Optional[str] = None

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
