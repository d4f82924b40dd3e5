from __future__ import annotations

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Referral Ledger API"
    database_url: str = "sqlite:///referral_ledger.db"
    log_level: str = "INFO"
    sqlite_busy_timeout: float = 15.0

    money_places: int = Field(default=2, ge=0, le=8)
    # Fraction of an approved deposit that lands in withdrawal_amount; the rest goes to balance.
    deposit_withdrawable_share: Decimal = Field(default=Decimal("0.5"), ge=0, le=1)
    single_pending_deposit: bool = True

    # One rate per referral level, level 1 being the direct referrer.
    referral_rates: list[Decimal] = Field(default_factory=lambda: [Decimal("1")])
    referral_max_depth: int = Field(default=16, ge=1)
    referral_tree_max_depth: int = Field(default=5, ge=1)

    idempotency_retention_hours: int = Field(default=24, ge=1)
    require_referrer: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="REFERRAL_LEDGER_",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
