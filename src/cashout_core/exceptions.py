"""Unified exception hierarchy for the cashout service.

All cashout-specific exceptions inherit from CashoutException, enabling:
- Consistent error handling across the orchestrator and the HTTP layer
- Proper HTTP status code mapping
- Structured error responses with error codes

All exceptions have:
- error_code: Machine-readable error code (e.g., "QUOTA_EXCEEDED")
- http_status: Appropriate HTTP status code for API responses
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to API response format
"""
from __future__ import annotations

import re
from typing import Any, Optional


class CashoutException(Exception):
    """Base exception for all cashout errors."""

    error_code: str = "CASHOUT_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Caller errors (4xx)
# =============================================================================

class CashoutValidationError(CashoutException):
    """Invalid input: unsupported method/tier, amount too small, bad account."""

    error_code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)
        self.field = field


class CashoutNotFoundError(CashoutException):
    """Requested resource not found."""

    error_code = "NOT_FOUND"
    http_status = 404

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        message = f"{resource_type} '{resource_id}' not found"
        details = details or {}
        details["resource_type"] = resource_type
        details["resource_id"] = resource_id
        super().__init__(message, details=details)


class CashoutAuthorizationError(CashoutException):
    """Operation attempted on a resource owned by another user."""

    error_code = "AUTHORIZATION_ERROR"
    http_status = 403


class QuotaExceededError(CashoutException):
    """A per-transaction or rolling-window cap would be exceeded."""

    error_code = "QUOTA_EXCEEDED"
    http_status = 429

    def __init__(
        self,
        limit: str,
        cap: Any,
        used: Any,
        requested: Any,
    ) -> None:
        if limit == "per_transaction":
            message = f"Amount exceeds per-transaction limit of ${cap}"
        else:
            message = f"Amount would exceed {limit} limit of ${cap}"
        super().__init__(
            message,
            details={
                "limit": limit,
                "cap": str(cap),
                "used": str(used),
                "requested": str(requested),
            },
        )
        self.limit = limit


class InsufficientFundsError(CashoutException):
    """Available ledger balance does not cover the withdrawal."""

    error_code = "INSUFFICIENT_FUNDS"
    http_status = 402

    def __init__(self, available: Any, required: Any) -> None:
        super().__init__(
            f"Insufficient balance: ${available} < ${required}",
            details={"available": str(available), "required": str(required)},
        )


class InvalidTransitionError(CashoutException):
    """Status transition not permitted by the cashout state machine."""

    error_code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(self, cashout_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Cashout {cashout_id} cannot move from {current} to {target}",
            details={"cashout_id": cashout_id, "current": current, "target": target},
        )
        self.current = current
        self.target = target


class CancellationRejectedError(CashoutException):
    """The channel refused to reverse an issued payout."""

    error_code = "CANCELLATION_REJECTED"
    http_status = 409


# =============================================================================
# Channel errors (5xx)
# =============================================================================

class ChannelError(CashoutException):
    """Failure reported by a payout channel."""

    error_code = "CHANNEL_ERROR"
    http_status = 502

    def __init__(
        self,
        message: str,
        channel_id: Optional[str] = None,
        retryable: Optional[bool] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if retryable is None:
            retryable = classify_channel_error(message)
        if channel_id:
            details["channel_id"] = channel_id
        details["retryable"] = retryable
        super().__init__(message, details=details)
        self.channel_id = channel_id
        self.retryable = retryable


class ChannelTimeoutError(ChannelError):
    """A channel call did not answer before the deadline; outcome unknown."""

    error_code = "CHANNEL_TIMEOUT"
    http_status = 504

    def __init__(self, channel_id: str, timeout: float) -> None:
        super().__init__(
            f"Channel {channel_id} did not respond within {timeout:.1f}s",
            channel_id=channel_id,
            retryable=True,
        )


_RETRYABLE_PATTERNS = (
    r"timeout|timed\s*out",
    r"connection|network|unreachable",
    r"service.*unavailable|\b50[0234]\b|internal.*error",
    r"rate.*limit|too.*many.*requests|\b429\b",
    r"temporar",
)


def classify_channel_error(message: Optional[str]) -> bool:
    """Return True when a channel error message looks transient."""
    if not message:
        return False
    text = message.lower()
    return any(re.search(pattern, text) for pattern in _RETRYABLE_PATTERNS)
