"""Cashout history: filtering, newest-first pagination and summary stats."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from .models import CashoutRequest, CashoutStatus, PaymentMethod

DEFAULT_PAGE_SIZE = 20


@dataclass
class CashoutHistoryFilters:
    status: Optional[CashoutStatus] = None
    method: Optional[PaymentMethod] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None

    def matches(self, request: CashoutRequest) -> bool:
        if self.status is not None and request.status != self.status:
            return False
        if self.method is not None and request.payment_method != self.method:
            return False
        if self.start_date is not None and request.created_at < self.start_date:
            return False
        if self.end_date is not None and request.created_at > self.end_date:
            return False
        if self.min_amount is not None and request.amount < self.min_amount:
            return False
        if self.max_amount is not None and request.amount > self.max_amount:
            return False
        return True


@dataclass
class CashoutStats:
    total_withdrawn: Decimal = field(default_factory=lambda: Decimal("0"))
    avg_processing_time: float = 0.0
    success_rate: float = 100.0


@dataclass
class CashoutHistory:
    requests: list[CashoutRequest]
    total: int
    has_more: bool
    cursor: Optional[str]
    stats: CashoutStats


def _parse_cursor(cursor: Optional[str]) -> int:
    if not cursor:
        return 0
    try:
        return max(0, int(cursor))
    except ValueError:
        return 0


def build_history(
    requests: Iterable[CashoutRequest],
    filters: Optional[CashoutHistoryFilters] = None,
    limit: int = DEFAULT_PAGE_SIZE,
    cursor: Optional[str] = None,
) -> CashoutHistory:
    """
    Filter, sort newest first and page a user's requests.

    The cursor is the offset of the next page. Stats cover every request
    matching the filters, not just the returned page.
    """
    filters = filters or CashoutHistoryFilters()
    matched = sorted(
        (r for r in requests if filters.matches(r)),
        key=lambda r: r.created_at,
        reverse=True,
    )

    start = _parse_cursor(cursor)
    end = start + limit
    page = matched[start:end]
    has_more = end < len(matched)

    completed = [r for r in matched if r.status == CashoutStatus.COMPLETED]
    stats = CashoutStats(
        total_withdrawn=sum((r.net_amount for r in completed), Decimal("0")),
        avg_processing_time=(
            sum(r.processing_time or 0.0 for r in completed) / len(completed) if completed else 0.0
        ),
        success_rate=(len(completed) / len(matched) * 100) if matched else 100.0,
    )

    return CashoutHistory(
        requests=page,
        total=len(matched),
        has_more=has_more,
        cursor=str(end) if has_more else None,
        stats=stats,
    )
