"""Abstract PayoutChannel interface for multi-channel cashout support."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from ..models import DestinationDetails, PaymentMethod


class HealthStatus(str, Enum):
    """Channel health status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


@dataclass
class PayoutResult:
    """Outcome of a payout initiation."""
    success: bool
    channel_reference: str = ""
    status: str = ""
    estimated_arrival: Optional[datetime] = None
    fee: Optional[Decimal] = None
    error: Optional[str] = None
    retryable: bool = False


@dataclass
class PayoutStatus:
    """Channel-side status of an issued payout."""
    reference: str
    status: str
    completed: bool = False
    failed: bool = False
    completed_at: Optional[datetime] = None
    transaction_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CancelResult:
    success: bool
    reference: str
    refunded_amount: Optional[Decimal] = None
    error: Optional[str] = None


@dataclass
class AccountVerification:
    is_valid: bool
    holder_name: Optional[str] = None
    account_type: Optional[str] = None
    error: Optional[str] = None


@dataclass
class HealthCheckResult:
    healthy: bool
    latency_ms: float
    message: Optional[str] = None


class PayoutChannel(ABC):
    """
    Abstract base class for payout channels (card push, bank rails, wallets,
    crypto rails).

    Every payout initiation carries an idempotency key; a channel must return
    the original result for a repeated key instead of paying twice.
    """

    @property
    @abstractmethod
    def channel_id(self) -> str:
        """Stable channel identifier."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Display name."""

    @property
    @abstractmethod
    def supported_methods(self) -> tuple[PaymentMethod, ...]:
        """Payment methods this channel can pay out to."""

    @property
    def supports_cancel(self) -> bool:
        """Whether an issued payout can still be pulled back."""
        return True

    def supports(self, method: PaymentMethod) -> bool:
        return method in self.supported_methods

    @abstractmethod
    async def initiate_payout(
        self,
        idempotency_key: str,
        amount: Decimal,
        currency: str,
        destination: DestinationDetails,
        metadata: Optional[dict[str, str]] = None,
    ) -> PayoutResult:
        """
        Issue a payout.

        Args:
            idempotency_key: Caller-unique key (the cashout id)
            amount: Net amount to deliver
            currency: Currency code
            destination: Destination details
            metadata: Optional metadata forwarded to the channel

        Returns:
            PayoutResult with the channel reference on success
        """

    @abstractmethod
    async def check_status(self, reference: str) -> PayoutStatus:
        """Query the status of an issued payout."""

    @abstractmethod
    async def cancel_payout(self, reference: str) -> CancelResult:
        """Attempt to reverse an issued payout."""

    @abstractmethod
    async def verify_account(self, destination: DestinationDetails) -> AccountVerification:
        """Validate a destination before it is stored."""

    @abstractmethod
    async def health_check(self) -> HealthCheckResult:
        """Check channel availability."""

    async def close(self) -> None:
        """Close any resources (HTTP clients, etc.)."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()
