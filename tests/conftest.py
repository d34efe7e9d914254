"""
Pytest configuration for cashout-core tests.
"""
from __future__ import annotations

import sys
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Optional

import pytest

# Add package source to path
package_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(package_src))

from cashout_core.channels import (  # noqa: E402
    BankTransferChannel,
    CardPushChannel,
    ChannelRegistry,
    CryptoChannel,
    WalletChannel,
)
from cashout_core.config import CashoutSettings  # noqa: E402
from cashout_core.ledger import InMemoryLedger  # noqa: E402
from cashout_core.models import (  # noqa: E402
    CashoutRequest,
    CashoutStatus,
    DestinationDetails,
    PaymentMethod,
    SpeedTier,
    StatusChange,
)
from cashout_core.orchestrator import CashoutOrchestrator  # noqa: E402
from cashout_core.store import InMemoryCashoutStore  # noqa: E402

ETH_ADDRESS = "0x1234567890123456789012345678901234567890"


class FakeClock:
    """Manually advanced UTC clock. Starts on a Wednesday at noon."""

    def __init__(self, start: datetime = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, moment: datetime) -> None:
        self.now = moment


def destination_for(method: PaymentMethod) -> DestinationDetails:
    """Destination details the sandbox channels accept for ``method``."""
    if method.is_crypto:
        return DestinationDetails(wallet_address=ETH_ADDRESS, network="ethereum")
    if method in (PaymentMethod.PAYPAL, PaymentMethod.VENMO, PaymentMethod.CASH_APP, PaymentMethod.APPLE_PAY):
        return DestinationDetails(email="jane@example.com", holder_name="Jane Doe")
    if method == PaymentMethod.DEBIT_CARD:
        return DestinationDetails(card_brand="visa", card_last4="4242", holder_name="Jane Doe")
    return DestinationDetails(
        bank_name="First Bank",
        account_type="checking",
        account_last4="6789",
        holder_name="Jane Doe",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return CashoutSettings(_env_file=None)


@pytest.fixture
def store():
    return InMemoryCashoutStore()


@pytest.fixture
def ledger():
    return InMemoryLedger({"user_1": Decimal("10000"), "user_2": Decimal("10000")})


@pytest.fixture
def channels(clock):
    return {
        "card_push": CardPushChannel(clock=clock),
        "wallet": WalletChannel(clock=clock),
        "crypto": CryptoChannel(clock=clock),
        "bank_transfer": BankTransferChannel(clock=clock),
    }


@pytest.fixture
def registry(channels, clock):
    registry = ChannelRegistry(clock=clock)
    registry.register(channels["card_push"], priority=10)
    registry.register(channels["wallet"], priority=20)
    registry.register(channels["crypto"], priority=30)
    registry.register(channels["bank_transfer"], priority=40)
    return registry


@pytest.fixture
def orchestrator(store, registry, ledger, settings, clock):
    return CashoutOrchestrator(
        store=store,
        registry=registry,
        ledger=ledger,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def make_account(orchestrator):
    """Add a verified payout account for a user."""

    async def _make(user_id: str = "user_1", method: PaymentMethod = PaymentMethod.INSTANT_BANK, **kwargs):
        return await orchestrator.add_payment_account(user_id, method, destination_for(method), **kwargs)

    return _make


def forge_request(
    clock: FakeClock,
    user_id: str = "user_1",
    status: CashoutStatus = CashoutStatus.PENDING,
    amount: Decimal = Decimal("100"),
    method: PaymentMethod = PaymentMethod.INSTANT_BANK,
    created_at: Optional[datetime] = None,
    processing_time: Optional[float] = None,
) -> CashoutRequest:
    """Build a request directly in ``status`` with a flat 1.00 fee."""
    created_at = created_at or clock()
    return CashoutRequest(
        cashout_id=f"cashout_{uuid.uuid4().hex[:16]}",
        user_id=user_id,
        amount=amount,
        currency="usd",
        payment_method=method,
        payment_account_id="acct_forged",
        destination=destination_for(method),
        speed_tier=SpeedTier.FAST,
        base_fee=Decimal("1.00"),
        percentage_fee=Decimal("0"),
        vip_discount=Decimal("0"),
        fee=Decimal("1.00"),
        net_amount=amount - Decimal("1.00"),
        status=status,
        status_history=[StatusChange(status=status, timestamp=created_at)],
        created_at=created_at,
        updated_at=created_at,
        processing_time=processing_time,
    )
