"""VIP tier benefits: quota caps, fee discounts and free instant cashouts."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from .models import VIPTier


@dataclass(frozen=True)
class TierBenefits:
    tier: VIPTier
    daily_limit: Decimal
    weekly_limit: Decimal
    monthly_limit: Decimal
    per_transaction_limit: Decimal
    fee_discount: Decimal  # percent
    free_instant_cashouts: int  # weekly allowance
    priority_support: bool
    dedicated_manager: bool
    instant_crypto_enabled: bool


def _benefits(
    tier: VIPTier,
    limits: tuple[str, str, str, str],
    fee_discount: str,
    free_instant: int,
    priority_support: bool,
    dedicated_manager: bool,
    instant_crypto: bool,
) -> TierBenefits:
    daily, weekly, monthly, per_tx = (Decimal(v) for v in limits)
    return TierBenefits(
        tier=tier,
        daily_limit=daily,
        weekly_limit=weekly,
        monthly_limit=monthly,
        per_transaction_limit=per_tx,
        fee_discount=Decimal(fee_discount),
        free_instant_cashouts=free_instant,
        priority_support=priority_support,
        dedicated_manager=dedicated_manager,
        instant_crypto_enabled=instant_crypto,
    )


TIER_BENEFITS: dict[VIPTier, TierBenefits] = {
    VIPTier.STANDARD: _benefits(VIPTier.STANDARD, ("5000", "20000", "50000", "2500"), "0", 0, False, False, False),
    VIPTier.SILVER: _benefits(VIPTier.SILVER, ("10000", "50000", "150000", "5000"), "10", 2, False, False, True),
    VIPTier.GOLD: _benefits(VIPTier.GOLD, ("25000", "100000", "400000", "10000"), "25", 5, True, False, True),
    VIPTier.PLATINUM: _benefits(VIPTier.PLATINUM, ("50000", "200000", "750000", "25000"), "50", 15, True, True, True),
    # 999 free instant cashouts is effectively unlimited
    VIPTier.DIAMOND: _benefits(VIPTier.DIAMOND, ("100000", "500000", "2000000", "50000"), "75", 999, True, True, True),
}

def get_tier_benefits(tier: VIPTier) -> TierBenefits:
    return TIER_BENEFITS[tier]
