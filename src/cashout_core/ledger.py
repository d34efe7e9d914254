"""Balance/ledger port used by the orchestrator, plus an in-memory double."""
from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Optional, Protocol

from .exceptions import InsufficientFundsError

logger = logging.getLogger(__name__)


class LedgerPort(Protocol):
    async def get_available_balance(self, user_id: str) -> Decimal: ...

    async def debit(self, user_id: str, amount: Decimal, reference_id: str) -> bool:
        """Debit once per reference. Returns False when the reference was already applied."""
        ...


class InMemoryLedger:
    """
    Balance book keyed by user.

    Debits are idempotent on ``reference_id``; a replayed reference is a no-op.
    """

    def __init__(self, balances: Optional[dict[str, Decimal]] = None) -> None:
        self._balances: dict[str, Decimal] = dict(balances or {})
        self._applied: dict[str, Decimal] = {}
        self._lock = asyncio.Lock()

    def credit(self, user_id: str, amount: Decimal) -> None:
        self._balances[user_id] = self._balances.get(user_id, Decimal("0")) + amount

    async def get_available_balance(self, user_id: str) -> Decimal:
        return self._balances.get(user_id, Decimal("0"))

    async def debit(self, user_id: str, amount: Decimal, reference_id: str) -> bool:
        async with self._lock:
            if reference_id in self._applied:
                logger.info("Debit %s already applied; skipping", reference_id)
                return False
            balance = self._balances.get(user_id, Decimal("0"))
            if balance < amount:
                raise InsufficientFundsError(balance, amount)
            self._balances[user_id] = balance - amount
            self._applied[reference_id] = amount
            return True

    def debit_count(self, reference_id: str) -> int:
        return 1 if reference_id in self._applied else 0
