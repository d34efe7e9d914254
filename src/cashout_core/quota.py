"""
Per-user withdrawal quotas over daily, weekly and monthly windows.

Windows are calendar aligned in UTC: a day ends at midnight, a week ends at
Monday 00:00 and a month ends on the first of the next month. Rollover is
lazy; a stale profile is reset on the next access rather than by a timer.

Mutations assume the caller holds ``user_lock(user_id)``.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import AsyncIterator, Callable, Optional

from .exceptions import QuotaExceededError
from .models import UserCashoutProfile, VIPTier, utc_now
from .store import CashoutStore
from .tiers import get_tier_benefits

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _midnight(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def next_day_start(now: datetime) -> datetime:
    return _midnight(now) + timedelta(days=1)


def next_week_start(now: datetime) -> datetime:
    """Next Monday 00:00 UTC (a week later if ``now`` is already Monday)."""
    days_ahead = 7 - now.weekday()
    return _midnight(now) + timedelta(days=days_ahead)


def next_month_start(now: datetime) -> datetime:
    first = _midnight(now).replace(day=1)
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


class QuotaTracker:
    """Loads, rolls over and mutates user cashout profiles."""

    def __init__(
        self,
        store: CashoutStore,
        *,
        smoothing_factor: float = 0.1,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._alpha = smoothing_factor
        self._clock = clock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _local_lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def user_lock(self, user_id: str) -> AsyncIterator[None]:
        """
        Serialize profile mutation for one user.

        Coroutines in this process queue on an ``asyncio.Lock``; the store's
        profile lock then excludes other workers sharing the same backend.
        """
        async with self._local_lock(user_id):
            async with self._store.profile_lock(user_id):
                yield

    def new_profile(self, user_id: str, tier: VIPTier = VIPTier.STANDARD) -> UserCashoutProfile:
        benefits = get_tier_benefits(tier)
        now = self._clock()
        return UserCashoutProfile(
            user_id=user_id,
            vip_tier=tier,
            daily_limit=benefits.daily_limit,
            weekly_limit=benefits.weekly_limit,
            monthly_limit=benefits.monthly_limit,
            per_transaction_limit=benefits.per_transaction_limit,
            daily_reset_at=next_day_start(now),
            weekly_reset_at=next_week_start(now),
            monthly_reset_at=next_month_start(now),
            fee_discount=benefits.fee_discount,
            free_instant_cashouts=benefits.free_instant_cashouts,
            updated_at=now,
        )

    def roll_windows(self, profile: UserCashoutProfile) -> bool:
        """Reset any window whose boundary has passed. Returns True on change."""
        now = self._clock()
        changed = False
        if now >= profile.daily_reset_at:
            profile.daily_used = ZERO
            profile.daily_reset_at = next_day_start(now)
            changed = True
        if now >= profile.weekly_reset_at:
            profile.weekly_used = ZERO
            profile.weekly_reset_at = next_week_start(now)
            profile.free_instant_cashouts = get_tier_benefits(profile.vip_tier).free_instant_cashouts
            changed = True
        if now >= profile.monthly_reset_at:
            profile.monthly_used = ZERO
            profile.monthly_reset_at = next_month_start(now)
            changed = True
        if changed:
            profile.updated_at = now
            logger.debug("Rolled quota windows for user %s", profile.user_id)
        return changed

    async def get_or_create_profile(self, user_id: str) -> UserCashoutProfile:
        profile = await self._store.get_profile(user_id)
        if profile is None:
            profile = self.new_profile(user_id)
            await self._store.save_profile(profile)
            logger.info("Created cashout profile for user %s", user_id)
            return profile
        if self.roll_windows(profile):
            await self._store.save_profile(profile)
        return profile

    async def _save(self, profile: UserCashoutProfile) -> None:
        profile.updated_at = self._clock()
        await self._store.save_profile(profile)

    # ------------------------------------------------------------------
    # Reservation
    # ------------------------------------------------------------------

    def check(self, profile: UserCashoutProfile, amount: Decimal) -> None:
        """Raise QuotaExceededError if reserving ``amount`` would breach a cap."""
        if amount > profile.per_transaction_limit:
            raise QuotaExceededError("per_transaction", profile.per_transaction_limit, ZERO, amount)
        for limit, used, cap in (
            ("daily", profile.daily_used, profile.daily_limit),
            ("weekly", profile.weekly_used, profile.weekly_limit),
            ("monthly", profile.monthly_used, profile.monthly_limit),
        ):
            if used + amount > cap:
                raise QuotaExceededError(limit, cap, used, amount)

    async def reserve(self, profile: UserCashoutProfile, amount: Decimal) -> None:
        self.roll_windows(profile)
        self.check(profile, amount)
        profile.daily_used += amount
        profile.weekly_used += amount
        profile.monthly_used += amount
        await self._save(profile)

    async def release(self, profile: UserCashoutProfile, amount: Decimal) -> None:
        self.roll_windows(profile)
        profile.daily_used = max(ZERO, profile.daily_used - amount)
        profile.weekly_used = max(ZERO, profile.weekly_used - amount)
        profile.monthly_used = max(ZERO, profile.monthly_used - amount)
        await self._save(profile)

    async def consume_free_instant(self, profile: UserCashoutProfile) -> bool:
        if profile.free_instant_cashouts <= 0:
            return False
        profile.free_instant_cashouts -= 1
        await self._save(profile)
        return True

    async def restore_free_instant(self, profile: UserCashoutProfile) -> None:
        allowance = get_tier_benefits(profile.vip_tier).free_instant_cashouts
        profile.free_instant_cashouts = min(allowance, profile.free_instant_cashouts + 1)
        await self._save(profile)

    # ------------------------------------------------------------------
    # Tier and statistics
    # ------------------------------------------------------------------

    async def upgrade_tier(self, profile: UserCashoutProfile, new_tier: VIPTier) -> UserCashoutProfile:
        benefits = get_tier_benefits(new_tier)
        previous = profile.vip_tier
        profile.vip_tier = new_tier
        profile.daily_limit = benefits.daily_limit
        profile.weekly_limit = benefits.weekly_limit
        profile.monthly_limit = benefits.monthly_limit
        profile.per_transaction_limit = benefits.per_transaction_limit
        profile.fee_discount = benefits.fee_discount
        profile.free_instant_cashouts = benefits.free_instant_cashouts
        await self._save(profile)
        logger.info("User %s tier %s -> %s", profile.user_id, previous.value, new_tier.value)
        return profile

    async def record_completion(
        self,
        profile: UserCashoutProfile,
        amount: Decimal,
        processing_seconds: Optional[float],
    ) -> None:
        alpha = self._alpha
        profile.lifetime_withdrawals += 1
        profile.lifetime_volume += amount
        if processing_seconds is not None:
            if profile.avg_processing_time == 0:
                profile.avg_processing_time = processing_seconds
            else:
                profile.avg_processing_time = (
                    profile.avg_processing_time * (1 - alpha) + processing_seconds * alpha
                )
        profile.success_rate = profile.success_rate * (1 - alpha) + 100.0 * alpha
        await self._save(profile)

    async def record_failure(self, profile: UserCashoutProfile) -> None:
        profile.success_rate = profile.success_rate * (1 - self._alpha)
        await self._save(profile)
