"""In-process sandbox payout channels.

These adapters model the behaviour of the real rails (arrival latency,
cancellability, destination validation, idempotent initiation) without
talking to any network. They back development environments and tests.
"""

from __future__ import annotations

import hashlib
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

from ..models import DestinationDetails, PaymentMethod, utc_now
from .base import (
    AccountVerification,
    CancelResult,
    HealthCheckResult,
    PayoutChannel,
    PayoutResult,
    PayoutStatus,
)

logger = logging.getLogger(__name__)

_ETH_ADDRESS = re.compile(r"^0x[a-fA-F0-9]{40}$")
_BTC_ADDRESS = re.compile(r"^(bc1|[13])[a-zA-HJ-NP-Z0-9]{25,39}$")


@dataclass
class _SandboxPayout:
    reference: str
    idempotency_key: str
    amount: Decimal
    currency: str
    arrival_at: datetime
    result: PayoutResult
    cancelled: bool = False


class SandboxChannel(PayoutChannel):
    """Shared sandbox behaviour; subclasses set identity and rail rules."""

    CHANNEL_ID = "sandbox"
    NAME = "Sandbox"
    METHODS: tuple[PaymentMethod, ...] = ()
    REFERENCE_PREFIX = "sbx"
    ARRIVAL_SECONDS = 60
    CHECK_LATENCY_MS = 50.0
    CANCELLABLE = True
    CANCEL_REFUSAL = "Payout cannot be cancelled"
    PENDING_STATUS = "pending"
    COMPLETED_STATUS = "paid"

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = utc_now,
        arrival_seconds: Optional[int] = None,
    ) -> None:
        self._clock = clock
        self._arrival = timedelta(seconds=arrival_seconds if arrival_seconds is not None else self.ARRIVAL_SECONDS)
        self._payouts: dict[str, _SandboxPayout] = {}
        self._by_key: dict[str, str] = {}
        self.healthy = True
        # Set to an error message to make the next initiations fail.
        self.fail_with: Optional[str] = None

    @property
    def channel_id(self) -> str:
        return self.CHANNEL_ID

    @property
    def name(self) -> str:
        return self.NAME

    @property
    def supported_methods(self) -> tuple[PaymentMethod, ...]:
        return self.METHODS

    @property
    def supports_cancel(self) -> bool:
        return self.CANCELLABLE

    @property
    def payout_count(self) -> int:
        return len(self._payouts)

    async def initiate_payout(
        self,
        idempotency_key: str,
        amount: Decimal,
        currency: str,
        destination: DestinationDetails,
        metadata: Optional[dict[str, str]] = None,
    ) -> PayoutResult:
        existing = self._by_key.get(idempotency_key)
        if existing is not None:
            logger.info("Idempotent replay on %s for key %s", self.CHANNEL_ID, idempotency_key)
            return self._payouts[existing].result

        if self.fail_with:
            return PayoutResult(success=False, status="rejected", error=self.fail_with)

        rejection = self._validate_destination(destination)
        if rejection:
            return PayoutResult(success=False, status="rejected", error=rejection)

        reference = f"{self.REFERENCE_PREFIX}_{uuid.uuid4().hex[:16]}"
        arrival_at = self._clock() + self._arrival
        result = PayoutResult(
            success=True,
            channel_reference=reference,
            status=self.PENDING_STATUS,
            estimated_arrival=arrival_at,
        )
        self._payouts[reference] = _SandboxPayout(
            reference=reference,
            idempotency_key=idempotency_key,
            amount=amount,
            currency=currency,
            arrival_at=arrival_at,
            result=result,
        )
        self._by_key[idempotency_key] = reference
        return result

    async def check_status(self, reference: str) -> PayoutStatus:
        payout = self._payouts.get(reference)
        if payout is None:
            return PayoutStatus(reference=reference, status="unknown", failed=True, error="Unknown payout reference")
        if payout.cancelled:
            return PayoutStatus(reference=reference, status="canceled", failed=True, error="Payout was cancelled")
        now = self._clock()
        if now >= payout.arrival_at:
            return PayoutStatus(
                reference=reference,
                status=self.COMPLETED_STATUS,
                completed=True,
                completed_at=payout.arrival_at,
                transaction_hash=self._transaction_hash(reference),
            )
        return PayoutStatus(reference=reference, status=self.PENDING_STATUS)

    async def cancel_payout(self, reference: str) -> CancelResult:
        payout = self._payouts.get(reference)
        if payout is None:
            return CancelResult(success=False, reference=reference, error="Unknown payout reference")
        if not self.CANCELLABLE:
            return CancelResult(success=False, reference=reference, error=self.CANCEL_REFUSAL)
        if self._clock() >= payout.arrival_at:
            return CancelResult(success=False, reference=reference, error="Payout already settled")
        payout.cancelled = True
        return CancelResult(success=True, reference=reference, refunded_amount=payout.amount)

    async def verify_account(self, destination: DestinationDetails) -> AccountVerification:
        rejection = self._validate_destination(destination)
        if rejection:
            return AccountVerification(is_valid=False, error=rejection)
        return AccountVerification(
            is_valid=True,
            holder_name=destination.holder_name,
            account_type=destination.account_type,
        )

    async def health_check(self) -> HealthCheckResult:
        if not self.healthy:
            return HealthCheckResult(healthy=False, latency_ms=self.CHECK_LATENCY_MS, message="sandbox marked down")
        return HealthCheckResult(healthy=True, latency_ms=self.CHECK_LATENCY_MS)

    def _validate_destination(self, destination: DestinationDetails) -> Optional[str]:
        return None

    def _transaction_hash(self, reference: str) -> Optional[str]:
        return None


class CardPushChannel(SandboxChannel):
    """Card push / instant bank push (debit card, RTP-style bank push)."""

    CHANNEL_ID = "card_push"
    NAME = "Card Push"
    METHODS = (PaymentMethod.DEBIT_CARD, PaymentMethod.INSTANT_BANK, PaymentMethod.BANK_TRANSFER)
    REFERENCE_PREFIX = "po"
    ARRIVAL_SECONDS = 60

    def _validate_destination(self, destination: DestinationDetails) -> Optional[str]:
        if not (destination.card_last4 or destination.account_last4):
            return "Card or bank account details required"
        return None


class WalletChannel(SandboxChannel):
    """Digital wallets (PayPal, Venmo, Cash App, Apple Pay)."""

    CHANNEL_ID = "wallet"
    NAME = "Digital Wallet"
    METHODS = (PaymentMethod.PAYPAL, PaymentMethod.VENMO, PaymentMethod.CASH_APP, PaymentMethod.APPLE_PAY)
    REFERENCE_PREFIX = "wlt"
    ARRIVAL_SECONDS = 300
    CANCELLABLE = False
    CANCEL_REFUSAL = "Wallet payouts cannot be cancelled after initiation"
    PENDING_STATUS = "PENDING"
    COMPLETED_STATUS = "SUCCESS"

    def _validate_destination(self, destination: DestinationDetails) -> Optional[str]:
        if not (destination.email or destination.phone or destination.username):
            return "Wallet email, phone or username required"
        return None


class CryptoChannel(SandboxChannel):
    """On-chain payouts (BTC, ETH, USDC, USDT)."""

    CHANNEL_ID = "crypto"
    NAME = "Crypto Rail"
    METHODS = (
        PaymentMethod.CRYPTO_BTC,
        PaymentMethod.CRYPTO_ETH,
        PaymentMethod.CRYPTO_USDC,
        PaymentMethod.CRYPTO_USDT,
    )
    REFERENCE_PREFIX = "tx"
    ARRIVAL_SECONDS = 600
    CHECK_LATENCY_MS = 100.0
    CANCELLABLE = False
    CANCEL_REFUSAL = "Crypto transactions cannot be cancelled once broadcast"
    PENDING_STATUS = "SUBMITTED"
    COMPLETED_STATUS = "CONFIRMED"

    def _validate_destination(self, destination: DestinationDetails) -> Optional[str]:
        address = destination.wallet_address or ""
        if _ETH_ADDRESS.match(address) or _BTC_ADDRESS.match(address):
            return None
        return "Invalid wallet address"

    def _transaction_hash(self, reference: str) -> Optional[str]:
        return "0x" + hashlib.sha256(reference.encode()).hexdigest()


class BankTransferChannel(SandboxChannel):
    """ACH-style bank transfers."""

    CHANNEL_ID = "bank_transfer"
    NAME = "Bank Transfer"
    METHODS = (PaymentMethod.BANK_TRANSFER, PaymentMethod.INSTANT_BANK)
    REFERENCE_PREFIX = "ach"
    ARRIVAL_SECONDS = 86400
    CHECK_LATENCY_MS = 75.0
    COMPLETED_STATUS = "posted"

    def _validate_destination(self, destination: DestinationDetails) -> Optional[str]:
        if not destination.account_last4:
            return "Bank account details required"
        return None


def create_sandbox_channels(clock: Callable[[], datetime] = utc_now) -> list[SandboxChannel]:
    """Default channel set in registration (tie-break) order."""
    return [
        CardPushChannel(clock=clock),
        WalletChannel(clock=clock),
        CryptoChannel(clock=clock),
        BankTransferChannel(clock=clock),
    ]
