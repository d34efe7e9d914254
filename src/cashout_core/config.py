"""Canonical configuration surface for the cashout service."""
from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class RiskWeights(BaseModel):
    """Score contributions for each risk flag."""
    large_amount: int = 20
    first_withdrawal: int = 15
    approaching_daily_limit: int = 10
    instant_crypto_new_user: int = 25
    high_velocity: int = 20


class CashoutSettings(BaseSettings):
    """Main cashout configuration.

    The thresholds below are illustrative operating constants, tuned per
    deployment through ``CASHOUT_*`` environment variables.
    """

    # Amounts
    min_cashout_amount: Decimal = Decimal("10")
    supported_currencies: List[str] = Field(default_factory=lambda: ["usd"])

    # Fee quotes
    quote_ttl_seconds: int = 300

    # Channel health
    health_smoothing_factor: float = 0.1
    degraded_success_rate: float = 80.0
    down_success_rate: float = 50.0
    channel_timeout_seconds: float = 30.0
    health_check_timeout_seconds: float = 5.0
    default_channel_per_transaction_limit: Decimal = Decimal("50000")
    default_channel_daily_limit: Decimal = Decimal("1000000")

    # Risk
    review_threshold: int = 50
    large_amount_threshold: Decimal = Decimal("5000")
    daily_limit_warning_ratio: Decimal = Decimal("0.8")
    new_user_withdrawal_count: int = 3
    velocity_window_seconds: int = 3600
    velocity_max_requests: int = 3
    risk_weights: RiskWeights = Field(default_factory=RiskWeights)

    # Profile statistics
    processing_time_smoothing_factor: float = 0.1

    # Background jobs
    reconcile_interval_seconds: int = 15
    health_check_interval_seconds: int = 60

    # Persistence
    redis_url: str = ""

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    class Config:
        env_prefix = "CASHOUT_"
        env_nested_delimiter = "__"
        env_file = ".env"
        extra = "ignore"

    @field_validator("supported_currencies", mode="before")
    @classmethod
    def parse_currencies(cls, v):
        """Parse comma-separated currencies from env var."""
        if isinstance(v, str):
            v = [c.strip() for c in v.split(",") if c.strip()]
        return [c.lower() for c in v]

    @field_validator("health_smoothing_factor", "processing_time_smoothing_factor")
    @classmethod
    def validate_smoothing(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("smoothing factor must be in (0, 1]")
        return v

    @field_validator("down_success_rate")
    @classmethod
    def validate_down_threshold(cls, v: float, info) -> float:
        degraded = info.data.get("degraded_success_rate", 80.0)
        if v > degraded:
            raise ValueError("down_success_rate must not exceed degraded_success_rate")
        return v


@lru_cache
def load_settings(env_file: str | None = None) -> CashoutSettings:
    """Load CashoutSettings once per process to keep services consistent."""
    env_path = Path(env_file) if env_file else None
    return CashoutSettings(_env_file=env_path)
