from __future__ import annotations

from decimal import Decimal

import pytest

from cashout_core.exceptions import (
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


@pytest.mark.parametrize(
    "exc,status,code",
    [
        (CashoutValidationError("bad", field="amount"), 400, "VALIDATION_ERROR"),
        (InsufficientFundsError(Decimal("5"), Decimal("10")), 402, "INSUFFICIENT_FUNDS"),
        (CashoutAuthorizationError("nope"), 403, "AUTHORIZATION_ERROR"),
        (CashoutNotFoundError("Cashout", "cashout_1"), 404, "NOT_FOUND"),
        (InvalidTransitionError("cashout_1", "sent", "cancelled"), 409, "INVALID_TRANSITION"),
        (CancellationRejectedError("refused"), 409, "CANCELLATION_REJECTED"),
        (QuotaExceededError("daily", Decimal("5000"), Decimal("4800"), Decimal("300")), 429, "QUOTA_EXCEEDED"),
        (ChannelError("Issuer declined"), 502, "CHANNEL_ERROR"),
        (ChannelTimeoutError("card_push", 30), 504, "CHANNEL_TIMEOUT"),
    ],
)
def test_http_mapping(exc, status, code):
    assert isinstance(exc, CashoutException)
    assert exc.http_status == status
    assert exc.to_dict()["error"] == code


def test_to_dict_omits_empty_details():
    assert CashoutAuthorizationError("nope").to_dict() == {"error": "AUTHORIZATION_ERROR", "message": "nope"}


def test_not_found_message_and_details():
    exc = CashoutNotFoundError("PaymentAccount", "acct_1")

    assert exc.message == "PaymentAccount 'acct_1' not found"
    assert exc.details == {"resource_type": "PaymentAccount", "resource_id": "acct_1"}


def test_quota_error_details():
    exc = QuotaExceededError("daily", Decimal("5000"), Decimal("4800"), Decimal("300"))

    assert exc.message == "Amount would exceed daily limit of $5000"
    assert exc.details == {"limit": "daily", "cap": "5000", "used": "4800", "requested": "300"}


@pytest.mark.parametrize(
    "message,retryable",
    [
        ("Request timed out after 30s", True),
        ("Connection refused", True),
        ("Upstream returned 503", True),
        ("Rate limit exceeded", True),
        ("Temporarily unavailable", True),
        ("Invalid account number", False),
        ("Card issuer declined", False),
        ("", False),
        (None, False),
    ],
)
def test_classify_channel_error(message, retryable):
    assert classify_channel_error(message) is retryable


def test_channel_error_classifies_when_not_told():
    assert ChannelError("network unreachable", channel_id="wallet").retryable is True
    assert ChannelError("network unreachable", retryable=False).retryable is False
    assert ChannelError("Account closed", channel_id="wallet").details == {"channel_id": "wallet", "retryable": False}


def test_timeout_error_is_always_retryable():
    exc = ChannelTimeoutError("crypto", 2.5)

    assert exc.retryable is True
    assert exc.message == "Channel crypto did not respond within 2.5s"
