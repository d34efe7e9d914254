"""Cashout orchestration: channel routing, fees, quotas, risk gating and request lifecycle."""

from .channels import (
    BankTransferChannel,
    CardPushChannel,
    ChannelHealth,
    ChannelRegistry,
    CryptoChannel,
    HealthStatus,
    PayoutChannel,
    WalletChannel,
    create_sandbox_channels,
)
from .config import CashoutSettings, RiskWeights, load_settings
from .exceptions import (
    CancellationRejectedError,
    CashoutAuthorizationError,
    CashoutException,
    CashoutNotFoundError,
    CashoutValidationError,
    ChannelError,
    ChannelTimeoutError,
    InsufficientFundsError,
    InvalidTransitionError,
    QuotaExceededError,
    classify_channel_error,
)
from .fees import FEE_SCHEDULE, FeeEngine, FeeQuote, SpeedTierFee
from .history import CashoutHistory, CashoutHistoryFilters, CashoutStats
from .ledger import InMemoryLedger, LedgerPort
from .logging_config import LogContext, setup_logging
from .models import (
    AccountStatus,
    CashoutRequest,
    CashoutStatus,
    DestinationDetails,
    PaymentAccount,
    PaymentMethod,
    SpeedTier,
    StatusChange,
    UserCashoutProfile,
    VIPTier,
)
from .orchestrator import (
    ALLOWED_TRANSITIONS,
    AvailableMethods,
    CashoutOrchestrator,
    InitiateCashoutRequest,
    MethodAvailability,
)
from .quota import QuotaTracker
from .risk import RiskAssessment, RiskScorer
from .store import CashoutStore, InMemoryCashoutStore, RedisCashoutStore
from .tiers import TIER_BENEFITS, TierBenefits, get_tier_benefits

__version__ = "0.1.0"

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AccountStatus",
    "AvailableMethods",
    "BankTransferChannel",
    "CancellationRejectedError",
    "CardPushChannel",
    "CashoutAuthorizationError",
    "CashoutException",
    "CashoutHistory",
    "CashoutHistoryFilters",
    "CashoutNotFoundError",
    "CashoutOrchestrator",
    "CashoutRequest",
    "CashoutSettings",
    "CashoutStats",
    "CashoutStatus",
    "CashoutStore",
    "CashoutValidationError",
    "ChannelError",
    "ChannelHealth",
    "ChannelRegistry",
    "ChannelTimeoutError",
    "CryptoChannel",
    "DestinationDetails",
    "FEE_SCHEDULE",
    "FeeEngine",
    "FeeQuote",
    "HealthStatus",
    "InMemoryCashoutStore",
    "InMemoryLedger",
    "InitiateCashoutRequest",
    "InsufficientFundsError",
    "InvalidTransitionError",
    "LedgerPort",
    "LogContext",
    "MethodAvailability",
    "PaymentAccount",
    "PaymentMethod",
    "PayoutChannel",
    "QuotaExceededError",
    "QuotaTracker",
    "RedisCashoutStore",
    "RiskAssessment",
    "RiskScorer",
    "RiskWeights",
    "SpeedTier",
    "SpeedTierFee",
    "StatusChange",
    "TIER_BENEFITS",
    "TierBenefits",
    "UserCashoutProfile",
    "VIPTier",
    "WalletChannel",
    "classify_channel_error",
    "create_sandbox_channels",
    "get_tier_benefits",
    "load_settings",
    "setup_logging",
]
