"""Cashout fee schedule and deterministic fee quoting.

Fee for a withdrawal = clamp(flat + amount * pct, min_fee, max_fee), minus the
user's VIP discount. Instant cashouts covered by the user's weekly free-instant
allowance cost nothing.

All amounts are quantized to cents with ROUND_HALF_UP: a fee that lands on a
half cent is collected in full instead of being truncated.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional

from .models import CENT, PaymentMethod, SpeedTier, UserCashoutProfile, utc_now

logger = logging.getLogger(__name__)

DEFAULT_QUOTE_TTL_SECONDS = 300


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class SpeedTierFee:
    tier: SpeedTier
    flat_fee: Decimal
    percentage_fee: Decimal  # percent of gross amount
    min_fee: Decimal
    max_fee: Decimal
    estimated_seconds: int
    is_available: bool = True


def _fee(tier: SpeedTier, flat: str, pct: str, min_fee: str, max_fee: str, seconds: int) -> SpeedTierFee:
    return SpeedTierFee(
        tier=tier,
        flat_fee=Decimal(flat),
        percentage_fee=Decimal(pct),
        min_fee=Decimal(min_fee),
        max_fee=Decimal(max_fee),
        estimated_seconds=seconds,
    )


_I, _F, _S, _E = SpeedTier.INSTANT, SpeedTier.FAST, SpeedTier.STANDARD, SpeedTier.ECONOMY

FEE_SCHEDULE: dict[PaymentMethod, list[SpeedTierFee]] = {
    PaymentMethod.INSTANT_BANK: [
        _fee(_I, "1.99", "1.5", "1.99", "25", 30),
        _fee(_F, "0.99", "1.0", "0.99", "15", 300),
        _fee(_S, "0", "0.5", "0", "10", 3600),
    ],
    PaymentMethod.DEBIT_CARD: [
        _fee(_I, "2.49", "1.75", "2.49", "30", 45),
        _fee(_F, "1.49", "1.25", "1.49", "20", 300),
    ],
    PaymentMethod.PAYPAL: [
        _fee(_I, "0.99", "2.0", "0.99", "20", 60),
        _fee(_F, "0", "1.5", "0", "15", 600),
    ],
    PaymentMethod.VENMO: [
        _fee(_I, "0.99", "2.0", "0.99", "20", 60),
        _fee(_F, "0", "1.5", "0", "15", 600),
    ],
    PaymentMethod.CRYPTO_BTC: [
        _fee(_F, "5.00", "0.5", "5.00", "50", 1800),
        _fee(_S, "2.00", "0.25", "2.00", "25", 3600),
    ],
    PaymentMethod.CRYPTO_ETH: [
        _fee(_F, "3.00", "0.5", "3.00", "40", 300),
        _fee(_S, "1.00", "0.25", "1.00", "20", 900),
    ],
    PaymentMethod.CRYPTO_USDC: [
        _fee(_I, "1.00", "0.5", "1.00", "15", 60),
        _fee(_F, "0.50", "0.25", "0.50", "10", 300),
    ],
    PaymentMethod.CRYPTO_USDT: [
        _fee(_I, "1.00", "0.5", "1.00", "15", 60),
        _fee(_F, "0.50", "0.25", "0.50", "10", 300),
    ],
    PaymentMethod.BANK_TRANSFER: [
        _fee(_S, "0", "0", "0", "0", 86400),
        _fee(_E, "0", "0", "0", "0", 259200),
    ],
    PaymentMethod.APPLE_PAY: [
        _fee(_I, "1.49", "1.5", "1.49", "25", 30),
    ],
    PaymentMethod.CASH_APP: [
        _fee(_I, "0.99", "1.75", "0.99", "20", 45),
    ],
}


@dataclass(frozen=True)
class FeeQuote:
    method: PaymentMethod
    speed_tier: SpeedTier
    amount: Decimal
    base_fee: Decimal
    percentage_fee: Decimal
    vip_discount: Decimal
    total_fee: Decimal
    net_amount: Decimal
    free_instant_used: bool
    estimated_seconds: int
    estimated_arrival: datetime
    valid_until: datetime

    def is_valid(self, at: datetime) -> bool:
        return at <= self.valid_until


def format_estimated_time(seconds: int) -> str:
    """Human-readable delivery estimate."""
    if seconds < 60:
        return "< 1 minute"
    if seconds < 300:
        return "< 5 minutes"
    if seconds < 3600:
        return "< 1 hour"
    if seconds < 86400:
        return "Same day"
    return "1-3 business days"


class FeeEngine:
    """Side-effect-free fee quoting over a static schedule."""

    def __init__(
        self,
        schedule: Optional[dict[PaymentMethod, list[SpeedTierFee]]] = None,
        *,
        quote_ttl_seconds: int = DEFAULT_QUOTE_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._schedule = schedule if schedule is not None else FEE_SCHEDULE
        self._ttl = timedelta(seconds=quote_ttl_seconds)
        self._clock = clock

    def available_speed_tiers(self, method: PaymentMethod) -> list[SpeedTierFee]:
        return [entry for entry in self._schedule.get(method, []) if entry.is_available]

    def lookup(self, method: PaymentMethod, speed_tier: SpeedTier) -> Optional[SpeedTierFee]:
        return next(
            (entry for entry in self.available_speed_tiers(method) if entry.tier == speed_tier),
            None,
        )

    def quote(
        self,
        amount: Decimal,
        method: PaymentMethod,
        speed_tier: SpeedTier,
        profile: UserCashoutProfile,
    ) -> Optional[FeeQuote]:
        """Quote the fee for a withdrawal, or None if the method/tier is not offered."""
        entry = self.lookup(method, speed_tier)
        if entry is None:
            logger.debug("No fee schedule for %s/%s", method.value, speed_tier.value)
            return None

        amount = round_money(amount)
        percentage_fee = round_money(amount * entry.percentage_fee / Decimal(100))
        total_fee = entry.flat_fee + percentage_fee
        total_fee = max(entry.min_fee, min(entry.max_fee, total_fee))

        vip_discount = Decimal("0")
        if profile.fee_discount > 0:
            vip_discount = round_money(total_fee * profile.fee_discount / Decimal(100))
            total_fee -= vip_discount

        free_instant_used = False
        if speed_tier == SpeedTier.INSTANT and profile.free_instant_cashouts > 0:
            free_instant_used = True
            total_fee = Decimal("0")

        total_fee = round_money(total_fee)
        now = self._clock()
        return FeeQuote(
            method=method,
            speed_tier=speed_tier,
            amount=amount,
            base_fee=round_money(entry.flat_fee),
            percentage_fee=percentage_fee,
            vip_discount=vip_discount,
            total_fee=total_fee,
            net_amount=amount - total_fee,
            free_instant_used=free_instant_used,
            estimated_seconds=entry.estimated_seconds,
            estimated_arrival=now + timedelta(seconds=entry.estimated_seconds),
            valid_until=now + self._ttl,
        )
