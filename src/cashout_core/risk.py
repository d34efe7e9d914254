"""Additive, advisory risk scoring for cashout requests."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from .config import CashoutSettings, RiskWeights
from .models import CashoutRequest, PaymentMethod, SpeedTier, UserCashoutProfile

logger = logging.getLogger(__name__)

LARGE_AMOUNT = "large_amount"
FIRST_WITHDRAWAL = "first_withdrawal"
APPROACHING_DAILY_LIMIT = "approaching_daily_limit"
INSTANT_CRYPTO_NEW_USER = "instant_crypto_new_user"
HIGH_VELOCITY = "high_velocity"


@dataclass
class RiskAssessment:
    score: int = 0
    flags: list[str] = field(default_factory=list)
    requires_review: bool = False


def count_recent(
    requests: Iterable[CashoutRequest],
    now: datetime,
    window: timedelta,
    exclude_id: Optional[str] = None,
) -> int:
    """Number of requests created within ``window`` before ``now``."""
    since = now - window
    return sum(
        1
        for r in requests
        if r.cashout_id != exclude_id and since <= r.created_at <= now
    )


class RiskScorer:
    """
    Scores a request from amount, profile history and recent velocity.

    The score never blocks a withdrawal on its own; at or above the review
    threshold the request is parked for manual review.
    """

    def __init__(
        self,
        *,
        weights: Optional[RiskWeights] = None,
        review_threshold: int = 50,
        large_amount_threshold: Decimal = Decimal("5000"),
        daily_limit_warning_ratio: Decimal = Decimal("0.8"),
        new_user_withdrawal_count: int = 3,
        velocity_max_requests: int = 3,
    ):
        self.weights = weights or RiskWeights()
        self.review_threshold = review_threshold
        self.large_amount_threshold = large_amount_threshold
        self.daily_limit_warning_ratio = daily_limit_warning_ratio
        self.new_user_withdrawal_count = new_user_withdrawal_count
        self.velocity_max_requests = velocity_max_requests

    @classmethod
    def from_settings(cls, settings: CashoutSettings) -> "RiskScorer":
        return cls(
            weights=settings.risk_weights,
            review_threshold=settings.review_threshold,
            large_amount_threshold=settings.large_amount_threshold,
            daily_limit_warning_ratio=settings.daily_limit_warning_ratio,
            new_user_withdrawal_count=settings.new_user_withdrawal_count,
            velocity_max_requests=settings.velocity_max_requests,
        )

    def assess(
        self,
        amount: Decimal,
        method: PaymentMethod,
        speed_tier: SpeedTier,
        profile: UserCashoutProfile,
        recent_requests: int,
    ) -> RiskAssessment:
        """
        Score one request.

        Args:
            amount: Gross withdrawal amount
            method: Payout method
            speed_tier: Requested speed tier
            profile: User profile, with this request already reserved
            recent_requests: Earlier requests by the user in the velocity window

        Returns:
            RiskAssessment with the additive score and triggered flags
        """
        w = self.weights
        result = RiskAssessment()

        def flag(name: str, weight: int) -> None:
            result.score += weight
            result.flags.append(name)

        if amount > self.large_amount_threshold:
            flag(LARGE_AMOUNT, w.large_amount)

        if profile.lifetime_withdrawals == 0:
            flag(FIRST_WITHDRAWAL, w.first_withdrawal)

        if profile.daily_used > profile.daily_limit * self.daily_limit_warning_ratio:
            flag(APPROACHING_DAILY_LIMIT, w.approaching_daily_limit)

        if (
            speed_tier == SpeedTier.INSTANT
            and method.is_crypto
            and profile.lifetime_withdrawals < self.new_user_withdrawal_count
        ):
            flag(INSTANT_CRYPTO_NEW_USER, w.instant_crypto_new_user)

        if recent_requests >= self.velocity_max_requests:
            flag(HIGH_VELOCITY, w.high_velocity)

        result.requires_review = result.score >= self.review_threshold
        if result.flags:
            logger.info(
                "Risk score %s for user %s (%s)",
                result.score,
                profile.user_id,
                ",".join(result.flags),
            )
        return result
