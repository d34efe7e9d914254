"""Payout channels: adapter interface, sandbox rails and the routing registry."""

from .base import (
    AccountVerification,
    CancelResult,
    HealthCheckResult,
    HealthStatus,
    PayoutChannel,
    PayoutResult,
    PayoutStatus,
)
from .registry import ChannelHealth, ChannelRegistry, select_channel
from .sandbox import (
    BankTransferChannel,
    CardPushChannel,
    CryptoChannel,
    SandboxChannel,
    WalletChannel,
    create_sandbox_channels,
)

__all__ = [
    "AccountVerification",
    "BankTransferChannel",
    "CancelResult",
    "CardPushChannel",
    "ChannelHealth",
    "ChannelRegistry",
    "CryptoChannel",
    "HealthCheckResult",
    "HealthStatus",
    "PayoutChannel",
    "PayoutResult",
    "PayoutStatus",
    "SandboxChannel",
    "WalletChannel",
    "create_sandbox_channels",
    "select_channel",
]
