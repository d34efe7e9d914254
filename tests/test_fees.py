from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from cashout_core.fees import FeeEngine, format_estimated_time, round_money
from cashout_core.models import PaymentMethod, SpeedTier, VIPTier
from cashout_core.quota import QuotaTracker
from cashout_core.store import InMemoryCashoutStore


@pytest.fixture
def engine(clock):
    return FeeEngine(clock=clock)


@pytest.fixture
def profiles(clock):
    tracker = QuotaTracker(InMemoryCashoutStore(), clock=clock)
    return lambda tier=VIPTier.STANDARD: tracker.new_profile("user_1", tier)


def test_standard_tier_fee_is_clamped_to_schedule_bounds(engine, profiles):
    quote = engine.quote(Decimal("1000"), PaymentMethod.INSTANT_BANK, SpeedTier.STANDARD, profiles())

    assert quote.percentage_fee == Decimal("5.00")
    assert quote.total_fee == Decimal("5.00")
    assert quote.net_amount == Decimal("995.00")

    capped = engine.quote(Decimal("2500"), PaymentMethod.INSTANT_BANK, SpeedTier.STANDARD, profiles())
    assert capped.percentage_fee == Decimal("12.50")
    assert capped.total_fee == Decimal("10.00")


def test_half_cent_percentage_fee_rounds_up(engine, profiles):
    # 1.5% of 33 is 0.495
    quote = engine.quote(Decimal("33"), PaymentMethod.INSTANT_BANK, SpeedTier.INSTANT, profiles())

    assert quote.percentage_fee == Decimal("0.50")
    assert quote.total_fee == Decimal("2.49")
    assert quote.net_amount == Decimal("30.51")


def test_round_money_never_truncates():
    assert round_money(Decimal("0.005")) == Decimal("0.01")
    assert round_money(Decimal("1.2349")) == Decimal("1.23")


def test_vip_discount_applies_after_clamping(engine, profiles):
    quote = engine.quote(Decimal("1000"), PaymentMethod.INSTANT_BANK, SpeedTier.FAST, profiles(VIPTier.GOLD))

    # 0.99 + 10.00, 25% off
    assert quote.vip_discount == Decimal("2.75")
    assert quote.total_fee == Decimal("8.24")
    assert quote.net_amount == Decimal("991.76")
    assert quote.free_instant_used is False


def test_free_instant_allowance_zeroes_instant_fee(engine, profiles):
    quote = engine.quote(Decimal("400"), PaymentMethod.DEBIT_CARD, SpeedTier.INSTANT, profiles(VIPTier.SILVER))

    assert quote.free_instant_used is True
    assert quote.total_fee == Decimal("0")
    assert quote.net_amount == Decimal("400.00")


def test_free_allowance_does_not_apply_to_other_tiers(engine, profiles):
    quote = engine.quote(Decimal("400"), PaymentMethod.DEBIT_CARD, SpeedTier.FAST, profiles(VIPTier.SILVER))

    assert quote.free_instant_used is False
    assert quote.total_fee > 0


def test_unsupported_method_tier_combination_returns_none(engine, profiles):
    assert engine.quote(Decimal("100"), PaymentMethod.APPLE_PAY, SpeedTier.STANDARD, profiles()) is None
    assert engine.quote(Decimal("100"), PaymentMethod.CRYPTO_BTC, SpeedTier.INSTANT, profiles()) is None


def test_fee_plus_net_equals_amount_for_every_offered_tier(engine, profiles):
    profile = profiles(VIPTier.PLATINUM)
    profile.free_instant_cashouts = 0
    for method in PaymentMethod:
        for entry in engine.available_speed_tiers(method):
            quote = engine.quote(Decimal("777.77"), method, entry.tier, profile)
            assert quote.total_fee + quote.net_amount == quote.amount, (method, entry.tier)


def test_quote_validity_and_arrival_follow_clock(engine, profiles, clock):
    quote = engine.quote(Decimal("100"), PaymentMethod.PAYPAL, SpeedTier.FAST, profiles())

    assert quote.valid_until == clock() + timedelta(seconds=300)
    assert quote.estimated_arrival == clock() + timedelta(seconds=600)
    assert quote.is_valid(clock())
    clock.advance(seconds=301)
    assert not quote.is_valid(clock())


def test_available_speed_tiers_lists_schedule_entries(engine):
    tiers = [e.tier for e in engine.available_speed_tiers(PaymentMethod.INSTANT_BANK)]
    assert tiers == [SpeedTier.INSTANT, SpeedTier.FAST, SpeedTier.STANDARD]
    assert engine.available_speed_tiers(PaymentMethod.CASH_APP)[0].tier == SpeedTier.INSTANT


@pytest.mark.parametrize(
    "seconds,expected",
    [
        (30, "< 1 minute"),
        (120, "< 5 minutes"),
        (600, "< 1 hour"),
        (3600, "Same day"),
        (86400, "1-3 business days"),
    ],
)
def test_format_estimated_time(seconds, expected):
    assert format_estimated_time(seconds) == expected
