"""Cashout domain models: requests, destination accounts, user profiles."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
import uuid

CENT = Decimal("0.01")


def to_cents(value: Decimal | int | str) -> Decimal:
    return Decimal(str(value)).quantize(CENT)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PaymentMethod(str, Enum):
    INSTANT_BANK = "instant_bank"
    DEBIT_CARD = "debit_card"
    PAYPAL = "paypal"
    VENMO = "venmo"
    CRYPTO_BTC = "crypto_btc"
    CRYPTO_ETH = "crypto_eth"
    CRYPTO_USDC = "crypto_usdc"
    CRYPTO_USDT = "crypto_usdt"
    BANK_TRANSFER = "bank_transfer"
    APPLE_PAY = "apple_pay"
    CASH_APP = "cash_app"

    @property
    def is_crypto(self) -> bool:
        return self.value.startswith("crypto_")


class SpeedTier(str, Enum):
    INSTANT = "instant"
    FAST = "fast"
    STANDARD = "standard"
    ECONOMY = "economy"


class VIPTier(str, Enum):
    STANDARD = "standard"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    DIAMOND = "diamond"


class CashoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    ON_HOLD = "on_hold"
    SENT = "sent"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REVERSED = "reversed"


class AccountStatus(str, Enum):
    PENDING_VERIFICATION = "pending_verification"
    ACTIVE = "active"
    SUSPENDED = "suspended"


# Statuses whose amount has been reserved but not yet debited from the ledger.
IN_FLIGHT_STATUSES = frozenset({
    CashoutStatus.PENDING,
    CashoutStatus.PROCESSING,
    CashoutStatus.ON_HOLD,
    CashoutStatus.SENT,
})


# ============================================================================
# Serialization helpers
# ============================================================================

def _dump(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [_dump(v) for v in value]
    if isinstance(value, dict):
        return {k: _dump(v) for k, v in value.items()}
    return value


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# ============================================================================
# Destination accounts
# ============================================================================

@dataclass(slots=True)
class DestinationDetails:
    """Masked destination attributes handed to a payout channel."""
    bank_name: Optional[str] = None
    account_type: Optional[str] = None
    account_last4: Optional[str] = None
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    username: Optional[str] = None
    wallet_address: Optional[str] = None
    network: Optional[str] = None
    holder_name: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "DestinationDetails":
        data = data or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(slots=True)
class PaymentAccount:
    """A verified payout destination bound to one method for one user."""
    user_id: str
    method: PaymentMethod
    details: DestinationDetails
    account_id: str = field(default_factory=lambda: f"acct_{uuid.uuid4().hex[:16]}")
    nickname: Optional[str] = None
    is_default: bool = False
    is_verified: bool = False
    status: AccountStatus = AccountStatus.PENDING_VERIFICATION
    daily_limit: Decimal = field(default_factory=lambda: Decimal("0"))
    monthly_limit: Decimal = field(default_factory=lambda: Decimal("0"))
    per_transaction_limit: Decimal = field(default_factory=lambda: Decimal("0"))
    total_withdrawals: int = 0
    total_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: _dump(getattr(self, f.name)) for f in fields(self) if f.name != "details"}
        data["details"] = self.details.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PaymentAccount":
        return cls(
            user_id=data["user_id"],
            method=PaymentMethod(data["method"]),
            details=DestinationDetails.from_dict(data.get("details")),
            account_id=data["account_id"],
            nickname=data.get("nickname"),
            is_default=data.get("is_default", False),
            is_verified=data.get("is_verified", False),
            status=AccountStatus(data.get("status", AccountStatus.PENDING_VERIFICATION.value)),
            daily_limit=Decimal(data.get("daily_limit", "0")),
            monthly_limit=Decimal(data.get("monthly_limit", "0")),
            per_transaction_limit=Decimal(data.get("per_transaction_limit", "0")),
            total_withdrawals=data.get("total_withdrawals", 0),
            total_amount=Decimal(data.get("total_amount", "0")),
            created_at=_dt(data["created_at"]),
            updated_at=_dt(data["updated_at"]),
        )


# ============================================================================
# User profile
# ============================================================================

@dataclass(slots=True)
class UserCashoutProfile:
    """Per-user caps, rolling-window usage and lifetime statistics."""
    user_id: str
    vip_tier: VIPTier
    daily_limit: Decimal
    weekly_limit: Decimal
    monthly_limit: Decimal
    per_transaction_limit: Decimal
    daily_reset_at: datetime
    weekly_reset_at: datetime
    monthly_reset_at: datetime
    daily_used: Decimal = field(default_factory=lambda: Decimal("0"))
    weekly_used: Decimal = field(default_factory=lambda: Decimal("0"))
    monthly_used: Decimal = field(default_factory=lambda: Decimal("0"))
    lifetime_withdrawals: int = 0
    lifetime_volume: Decimal = field(default_factory=lambda: Decimal("0"))
    avg_processing_time: float = 0.0
    success_rate: float = 100.0
    fee_discount: Decimal = field(default_factory=lambda: Decimal("0"))
    free_instant_cashouts: int = 0
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: _dump(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserCashoutProfile":
        return cls(
            user_id=data["user_id"],
            vip_tier=VIPTier(data["vip_tier"]),
            daily_limit=Decimal(data["daily_limit"]),
            weekly_limit=Decimal(data["weekly_limit"]),
            monthly_limit=Decimal(data["monthly_limit"]),
            per_transaction_limit=Decimal(data["per_transaction_limit"]),
            daily_reset_at=_dt(data["daily_reset_at"]),
            weekly_reset_at=_dt(data["weekly_reset_at"]),
            monthly_reset_at=_dt(data["monthly_reset_at"]),
            daily_used=Decimal(data["daily_used"]),
            weekly_used=Decimal(data["weekly_used"]),
            monthly_used=Decimal(data["monthly_used"]),
            lifetime_withdrawals=data["lifetime_withdrawals"],
            lifetime_volume=Decimal(data["lifetime_volume"]),
            avg_processing_time=data["avg_processing_time"],
            success_rate=data["success_rate"],
            fee_discount=Decimal(data["fee_discount"]),
            free_instant_cashouts=data["free_instant_cashouts"],
            updated_at=_dt(data["updated_at"]),
        )


# ============================================================================
# Cashout request
# ============================================================================

@dataclass(slots=True)
class StatusChange:
    status: CashoutStatus
    timestamp: datetime
    reason: Optional[str] = None


@dataclass(slots=True)
class CashoutRequest:
    """One withdrawal attempt. Transitioned, never deleted."""
    cashout_id: str
    user_id: str
    amount: Decimal
    currency: str
    payment_method: PaymentMethod
    payment_account_id: str
    destination: DestinationDetails
    speed_tier: SpeedTier
    base_fee: Decimal
    percentage_fee: Decimal
    vip_discount: Decimal
    fee: Decimal
    net_amount: Decimal
    status: CashoutStatus
    status_history: list[StatusChange]
    created_at: datetime
    updated_at: datetime
    free_instant_used: bool = False
    estimated_arrival: Optional[datetime] = None
    actual_arrival: Optional[datetime] = None
    processing_time: Optional[float] = None
    channel_id: Optional[str] = None
    channel_reference: Optional[str] = None
    risk_score: int = 0
    risk_flags: list[str] = field(default_factory=list)
    requires_manual_review: bool = False
    ledger_debited: bool = False
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in (CashoutStatus.FAILED, CashoutStatus.CANCELLED, CashoutStatus.REVERSED)

    @property
    def last_reason(self) -> Optional[str]:
        return self.status_history[-1].reason if self.status_history else None

    def to_dict(self) -> dict[str, Any]:
        data = {
            f.name: _dump(getattr(self, f.name))
            for f in fields(self)
            if f.name not in ("destination", "status_history")
        }
        data["destination"] = self.destination.to_dict()
        data["status_history"] = [
            {"status": c.status.value, "timestamp": c.timestamp.isoformat(), "reason": c.reason}
            for c in self.status_history
        ]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CashoutRequest":
        return cls(
            cashout_id=data["cashout_id"],
            user_id=data["user_id"],
            amount=Decimal(data["amount"]),
            currency=data["currency"],
            payment_method=PaymentMethod(data["payment_method"]),
            payment_account_id=data["payment_account_id"],
            destination=DestinationDetails.from_dict(data.get("destination")),
            speed_tier=SpeedTier(data["speed_tier"]),
            base_fee=Decimal(data["base_fee"]),
            percentage_fee=Decimal(data["percentage_fee"]),
            vip_discount=Decimal(data["vip_discount"]),
            fee=Decimal(data["fee"]),
            net_amount=Decimal(data["net_amount"]),
            status=CashoutStatus(data["status"]),
            status_history=[
                StatusChange(
                    status=CashoutStatus(c["status"]),
                    timestamp=_dt(c["timestamp"]),
                    reason=c.get("reason"),
                )
                for c in data["status_history"]
            ],
            created_at=_dt(data["created_at"]),
            updated_at=_dt(data["updated_at"]),
            free_instant_used=data.get("free_instant_used", False),
            estimated_arrival=_dt(data.get("estimated_arrival")),
            actual_arrival=_dt(data.get("actual_arrival")),
            processing_time=data.get("processing_time"),
            channel_id=data.get("channel_id"),
            channel_reference=data.get("channel_reference"),
            risk_score=data.get("risk_score", 0),
            risk_flags=list(data.get("risk_flags", [])),
            requires_manual_review=data.get("requires_manual_review", False),
            ledger_debited=data.get("ledger_debited", False),
            metadata=dict(data.get("metadata", {})),
        )
