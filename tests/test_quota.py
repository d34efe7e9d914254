from __future__ import annotations

import asyncio
import gc
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from cashout_core.exceptions import QuotaExceededError
from cashout_core.models import VIPTier
from cashout_core.quota import QuotaTracker, next_day_start, next_month_start, next_week_start
from cashout_core.store import InMemoryCashoutStore


@pytest.fixture
def tracker(store, clock):
    return QuotaTracker(store, clock=clock)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_window_boundaries_are_calendar_aligned():
    wednesday = _utc(2026, 3, 4, 12, 30)
    assert next_day_start(wednesday) == _utc(2026, 3, 5)
    assert next_week_start(wednesday) == _utc(2026, 3, 9)
    assert next_month_start(wednesday) == _utc(2026, 4, 1)


def test_week_boundary_on_monday_is_the_following_monday():
    assert next_week_start(_utc(2026, 3, 9, 0, 0)) == _utc(2026, 3, 16)


def test_month_boundary_wraps_year():
    assert next_month_start(_utc(2026, 12, 31, 23, 59)) == _utc(2027, 1, 1)


@pytest.mark.asyncio
async def test_new_profile_uses_standard_tier(tracker, store):
    profile = await tracker.get_or_create_profile("user_1")

    assert profile.vip_tier == VIPTier.STANDARD
    assert profile.daily_limit == Decimal("5000")
    assert profile.per_transaction_limit == Decimal("2500")
    assert profile.free_instant_cashouts == 0
    assert profile.daily_reset_at == _utc(2026, 3, 5)
    assert await store.get_profile("user_1") is not None


@pytest.mark.asyncio
async def test_daily_cap_rejects_300_after_4800_and_accepts_200(tracker):
    profile = await tracker.get_or_create_profile("user_1")
    profile.daily_used = Decimal("4800")

    with pytest.raises(QuotaExceededError) as exc_info:
        await tracker.reserve(profile, Decimal("300"))

    assert exc_info.value.limit == "daily"
    assert exc_info.value.to_dict()["details"]["limit"] == "daily"
    assert "daily limit of $5000" in exc_info.value.message
    assert profile.daily_used == Decimal("4800")

    await tracker.reserve(profile, Decimal("200"))
    assert profile.daily_used == Decimal("5000")
    assert profile.weekly_used == Decimal("200")
    assert profile.monthly_used == Decimal("200")


@pytest.mark.asyncio
async def test_per_transaction_limit_checked_first(tracker):
    profile = await tracker.get_or_create_profile("user_1")

    with pytest.raises(QuotaExceededError) as exc_info:
        await tracker.reserve(profile, Decimal("2600"))

    assert exc_info.value.limit == "per_transaction"
    assert exc_info.value.message == "Amount exceeds per-transaction limit of $2500"


@pytest.mark.asyncio
async def test_weekly_and_monthly_caps_named(tracker):
    profile = await tracker.get_or_create_profile("user_1")
    profile.weekly_used = Decimal("19900")
    with pytest.raises(QuotaExceededError) as exc_info:
        await tracker.reserve(profile, Decimal("200"))
    assert exc_info.value.limit == "weekly"

    profile.weekly_used = Decimal("0")
    profile.monthly_used = Decimal("49950")
    with pytest.raises(QuotaExceededError) as exc_info:
        await tracker.reserve(profile, Decimal("100"))
    assert exc_info.value.limit == "monthly"


@pytest.mark.asyncio
async def test_release_floors_usage_at_zero(tracker):
    profile = await tracker.get_or_create_profile("user_1")
    await tracker.reserve(profile, Decimal("100"))

    await tracker.release(profile, Decimal("250"))

    assert profile.daily_used == Decimal("0")
    assert profile.weekly_used == Decimal("0")
    assert profile.monthly_used == Decimal("0")


@pytest.mark.asyncio
async def test_stale_daily_window_resets_on_next_access(tracker, clock):
    profile = await tracker.get_or_create_profile("user_1")
    await tracker.reserve(profile, Decimal("1000"))

    clock.advance(days=1)
    reloaded = await tracker.get_or_create_profile("user_1")

    assert reloaded.daily_used == Decimal("0")
    assert reloaded.daily_reset_at == _utc(2026, 3, 6)
    # Same week and month
    assert reloaded.weekly_used == Decimal("1000")
    assert reloaded.monthly_used == Decimal("1000")


@pytest.mark.asyncio
async def test_weekly_rollover_restores_free_instant_allowance(tracker, clock):
    profile = await tracker.get_or_create_profile("user_1")
    await tracker.upgrade_tier(profile, VIPTier.SILVER)
    assert await tracker.consume_free_instant(profile) is True
    assert await tracker.consume_free_instant(profile) is True
    assert await tracker.consume_free_instant(profile) is False

    clock.set(_utc(2026, 3, 9, 0, 0, 1))
    reloaded = await tracker.get_or_create_profile("user_1")

    assert reloaded.free_instant_cashouts == 2
    assert reloaded.weekly_reset_at == _utc(2026, 3, 16)


@pytest.mark.asyncio
async def test_restore_free_instant_is_capped_at_allowance(tracker):
    profile = await tracker.get_or_create_profile("user_1")
    await tracker.upgrade_tier(profile, VIPTier.SILVER)

    await tracker.restore_free_instant(profile)

    assert profile.free_instant_cashouts == 2


@pytest.mark.asyncio
async def test_upgrade_tier_keeps_usage(tracker):
    profile = await tracker.get_or_create_profile("user_1")
    await tracker.reserve(profile, Decimal("1500"))

    await tracker.upgrade_tier(profile, VIPTier.GOLD)

    assert profile.daily_limit == Decimal("25000")
    assert profile.per_transaction_limit == Decimal("10000")
    assert profile.fee_discount == Decimal("25")
    assert profile.free_instant_cashouts == 5
    assert profile.daily_used == Decimal("1500")


@pytest.mark.asyncio
async def test_record_completion_and_failure_update_statistics(tracker):
    profile = await tracker.get_or_create_profile("user_1")

    await tracker.record_completion(profile, Decimal("500"), 60.0)
    assert profile.lifetime_withdrawals == 1
    assert profile.lifetime_volume == Decimal("500")
    assert profile.avg_processing_time == 60.0
    assert profile.success_rate == pytest.approx(100.0)

    await tracker.record_completion(profile, Decimal("100"), 160.0)
    assert profile.avg_processing_time == pytest.approx(70.0)

    await tracker.record_failure(profile)
    assert profile.success_rate == pytest.approx(90.0)


@pytest.mark.asyncio
async def test_concurrent_reservations_never_exceed_cap(clock):
    tracker = QuotaTracker(InMemoryCashoutStore(), clock=clock)

    async def attempt():
        async with tracker.user_lock("user_1"):
            profile = await tracker.get_or_create_profile("user_1")
            await asyncio.sleep(0)
            await tracker.reserve(profile, Decimal("2000"))

    results = await asyncio.gather(attempt(), attempt(), attempt(), return_exceptions=True)

    failures = [r for r in results if isinstance(r, QuotaExceededError)]
    assert len(failures) == 1
    profile = await tracker.get_or_create_profile("user_1")
    assert profile.daily_used == Decimal("4000")


@pytest.mark.asyncio
async def test_user_lock_excludes_same_user_only(tracker):
    order = []

    async def hold(user_id, label):
        async with tracker.user_lock(user_id):
            order.append(f"{label}:in")
            await asyncio.sleep(0)
            order.append(f"{label}:out")

    await asyncio.gather(hold("a", "a1"), hold("a", "a2"), hold("b", "b1"))

    assert order.index("a1:out") < order.index("a2:in")
    assert order.index("b1:in") < order.index("a1:out")


@pytest.mark.asyncio
async def test_idle_user_locks_are_released(tracker):
    for n in range(50):
        async with tracker.user_lock(f"user_{n}"):
            pass

    gc.collect()
    assert len(tracker._locks) == 0
