"""
Cashout orchestration: the request state machine tying quota, fees, risk,
ledger and payout channels together.

    pending    -> processing | on_hold | failed | cancelled
    processing -> sent | failed | cancelled | on_hold (channel timeout)
    on_hold    -> processing | failed
    sent       -> completed | failed
    completed  -> reversed

Locks: a per-request lock guards every status-check-then-act sequence and a
per-user lock (owned by the QuotaTracker) guards profile mutation. When both
are needed the request lock is taken first. Lock maps hold weak references,
so a lock lives only while some coroutine holds or awaits it.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

from .channels.base import PayoutChannel
from .channels.registry import ChannelRegistry
from .config import CashoutSettings, load_settings
from .exceptions import (
    CancellationRejectedError,
    CashoutAuthorizationError,
    CashoutNotFoundError,
    CashoutValidationError,
    ChannelError,
    ChannelTimeoutError,
    InsufficientFundsError,
    InvalidTransitionError,
    QuotaExceededError,
    classify_channel_error,
)
from .fees import FeeEngine, FeeQuote, SpeedTierFee, format_estimated_time
from .history import CashoutHistory, CashoutHistoryFilters, build_history
from .ledger import LedgerPort
from .logging_config import LogContext
from .models import (
    IN_FLIGHT_STATUSES,
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
    to_cents,
    utc_now,
)
from .quota import QuotaTracker
from .risk import RiskScorer, count_recent
from .store import CashoutStore
from .tiers import get_tier_benefits

logger = logging.getLogger(__name__)

S = CashoutStatus

ALLOWED_TRANSITIONS: dict[CashoutStatus, frozenset[CashoutStatus]] = {
    S.PENDING: frozenset({S.PROCESSING, S.ON_HOLD, S.FAILED, S.CANCELLED}),
    S.PROCESSING: frozenset({S.SENT, S.FAILED, S.CANCELLED, S.ON_HOLD}),
    S.ON_HOLD: frozenset({S.PROCESSING, S.FAILED}),
    S.SENT: frozenset({S.COMPLETED, S.FAILED}),
    S.COMPLETED: frozenset({S.REVERSED}),
    S.FAILED: frozenset(),
    S.CANCELLED: frozenset(),
    S.REVERSED: frozenset(),
}

CANCELLABLE_STATUSES = frozenset({S.PENDING, S.PROCESSING})

NO_PROVIDER_REASON = "No available provider"


def can_transition(current: CashoutStatus, target: CashoutStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


@dataclass
class InitiateCashoutRequest:
    amount: Decimal
    payment_account_id: str
    speed_tier: SpeedTier = SpeedTier.FAST
    currency: str = "usd"


@dataclass
class MethodAvailability:
    method: PaymentMethod
    speed_tiers: list[SpeedTierFee]
    min_amount: Decimal
    max_amount: Decimal
    estimated_time: str
    is_available: bool = True


@dataclass
class AvailableMethods:
    methods: list[MethodAvailability]
    profile: UserCashoutProfile
    available_balance: Decimal
    pending_total: Decimal = field(default_factory=lambda: Decimal("0"))


class CashoutOrchestrator:
    """
    Drives cashout requests from submission to a terminal outcome.

    Channel and ledger failures are recorded on the request (status history,
    channel health) and never propagate to the caller. Validation, quota,
    balance and authorization problems are raised synchronously.
    """

    def __init__(
        self,
        *,
        store: CashoutStore,
        registry: ChannelRegistry,
        ledger: LedgerPort,
        fee_engine: Optional[FeeEngine] = None,
        quota: Optional[QuotaTracker] = None,
        risk: Optional[RiskScorer] = None,
        settings: Optional[CashoutSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings or load_settings()
        self._store = store
        self._registry = registry
        self._ledger = ledger
        self._clock = clock
        self._fees = fee_engine or FeeEngine(quote_ttl_seconds=self._settings.quote_ttl_seconds, clock=clock)
        self._quota = quota or QuotaTracker(
            store,
            smoothing_factor=self._settings.processing_time_smoothing_factor,
            clock=clock,
        )
        self._risk = risk or RiskScorer.from_settings(self._settings)
        self._request_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @property
    def registry(self) -> ChannelRegistry:
        return self._registry

    @property
    def quota(self) -> QuotaTracker:
        return self._quota

    def _request_lock(self, cashout_id: str) -> asyncio.Lock:
        lock = self._request_locks.get(cashout_id)
        if lock is None:
            lock = self._request_locks[cashout_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, request: CashoutRequest, target: CashoutStatus, reason: Optional[str] = None) -> None:
        if not can_transition(request.status, target):
            raise InvalidTransitionError(request.cashout_id, request.status.value, target.value)
        now = self._clock()
        if request.status_history and now < request.status_history[-1].timestamp:
            now = request.status_history[-1].timestamp
        request.status_history.append(StatusChange(status=target, timestamp=now, reason=reason))
        logger.info(
            "Cashout %s %s -> %s%s",
            request.cashout_id,
            request.status.value,
            target.value,
            f" ({reason})" if reason else "",
        )
        request.status = target
        request.updated_at = now

    async def _load(self, cashout_id: str) -> CashoutRequest:
        request = await self._store.get_cashout(cashout_id)
        if request is None:
            raise CashoutNotFoundError("Cashout", cashout_id)
        return request

    @staticmethod
    def _in_flight_total(requests: list[CashoutRequest]) -> Decimal:
        return sum(
            (r.amount for r in requests if r.status in IN_FLIGHT_STATUSES and not r.ledger_debited),
            Decimal("0"),
        )

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    def _validate(self, request: InitiateCashoutRequest) -> tuple[Decimal, str]:
        try:
            amount = to_cents(request.amount)
        except ArithmeticError:
            raise CashoutValidationError("Amount must be a number", field="amount")
        if amount <= 0:
            raise CashoutValidationError("Amount must be positive", field="amount")
        minimum = self._settings.min_cashout_amount
        if amount < minimum:
            raise CashoutValidationError(f"Minimum cashout amount is ${minimum}", field="amount")
        currency = request.currency.lower()
        if currency not in self._settings.supported_currencies:
            raise CashoutValidationError(f"Unsupported currency: {request.currency}", field="currency")
        return amount, currency

    async def _resolve_account(self, user_id: str, account_id: str, amount: Decimal) -> PaymentAccount:
        account = await self._store.get_account(account_id)
        if account is None:
            raise CashoutNotFoundError("PaymentAccount", account_id)
        if account.user_id != user_id:
            raise CashoutAuthorizationError("Payment account belongs to another user")
        if account.status != AccountStatus.ACTIVE:
            raise CashoutValidationError(
                f"Payment account is {account.status.value}",
                field="payment_account_id",
            )
        if account.per_transaction_limit > 0 and amount > account.per_transaction_limit:
            raise QuotaExceededError("account_per_transaction", account.per_transaction_limit, Decimal("0"), amount)
        return account

    async def initiate(
        self,
        user_id: str,
        request: InitiateCashoutRequest,
        metadata: Optional[dict[str, str]] = None,
    ) -> CashoutRequest:
        """
        Submit a withdrawal.

        Args:
            user_id: Requesting user
            request: Amount, destination account, speed tier and currency
            metadata: Client context (ip_address, user_agent, device_id)

        Returns:
            The request in its post-initiation state: on_hold, sent or failed

        Raises:
            CashoutValidationError: Bad amount, currency, account or tier
            QuotaExceededError: A cap would be exceeded
            InsufficientFundsError: Ledger balance does not cover the amount
        """
        amount, currency = self._validate(request)

        with LogContext(user_id=user_id):
            async with self._quota.user_lock(user_id):
                profile = await self._quota.get_or_create_profile(user_id)
                await self._quota.reserve(profile, amount)
                free_instant_taken = False
                try:
                    cashout = await self._build_request(user_id, request, amount, currency, profile, metadata)
                    if cashout.free_instant_used:
                        free_instant_taken = await self._quota.consume_free_instant(profile)
                    await self._store.save_cashout(cashout)
                except Exception:
                    if free_instant_taken:
                        await self._quota.restore_free_instant(profile)
                    await self._quota.release(profile, amount)
                    raise

            with LogContext(cashout_id=cashout.cashout_id):
                async with self._request_lock(cashout.cashout_id):
                    if cashout.requires_manual_review:
                        self._transition(
                            cashout,
                            S.ON_HOLD,
                            f"Manual review required: {', '.join(cashout.risk_flags)}",
                        )
                        await self._store.save_cashout(cashout)
                        return cashout

                    self._transition(cashout, S.PROCESSING)
                    await self._store.save_cashout(cashout)
                    await self._process_locked(cashout)
                    return cashout

    async def _build_request(
        self,
        user_id: str,
        request: InitiateCashoutRequest,
        amount: Decimal,
        currency: str,
        profile: UserCashoutProfile,
        metadata: Optional[dict[str, str]],
    ) -> CashoutRequest:
        account = await self._resolve_account(user_id, request.payment_account_id, amount)

        quote = self._fees.quote(amount, account.method, request.speed_tier, profile)
        if quote is None:
            raise CashoutValidationError(
                f"Speed tier {request.speed_tier.value} is not offered for {account.method.value}",
                field="speed_tier",
            )
        if quote.net_amount <= 0:
            raise CashoutValidationError("Amount does not cover the cashout fee", field="amount")

        history = await self._store.list_cashouts_by_user(user_id)
        balance = await self._ledger.get_available_balance(user_id)
        spendable = balance - self._in_flight_total(history)
        if spendable < amount:
            raise InsufficientFundsError(max(spendable, Decimal("0")), amount)

        now = self._clock()
        cashout = CashoutRequest(
            cashout_id=f"cashout_{uuid.uuid4().hex[:16]}",
            user_id=user_id,
            amount=amount,
            currency=currency,
            payment_method=account.method,
            payment_account_id=account.account_id,
            destination=account.details,
            speed_tier=request.speed_tier,
            base_fee=quote.base_fee,
            percentage_fee=quote.percentage_fee,
            vip_discount=quote.vip_discount,
            fee=quote.total_fee,
            net_amount=quote.net_amount,
            status=S.PENDING,
            status_history=[StatusChange(status=S.PENDING, timestamp=now)],
            created_at=now,
            updated_at=now,
            free_instant_used=quote.free_instant_used,
            estimated_arrival=quote.estimated_arrival,
            metadata={k: v for k, v in (metadata or {}).items() if v is not None},
        )

        recent = count_recent(
            (r for r in history if r.user_id == user_id),
            now,
            timedelta(seconds=self._settings.velocity_window_seconds),
            exclude_id=cashout.cashout_id,
        )
        assessment = self._risk.assess(amount, account.method, request.speed_tier, profile, recent)
        cashout.risk_score = assessment.score
        cashout.risk_flags = assessment.flags
        cashout.requires_manual_review = assessment.requires_review
        return cashout

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process(self, cashout_id: str) -> CashoutRequest:
        """Route a request sitting in ``processing`` to a payout channel."""
        async with self._request_lock(cashout_id):
            request = await self._load(cashout_id)
            if request.status != S.PROCESSING:
                raise InvalidTransitionError(cashout_id, request.status.value, S.SENT.value)
            with LogContext(cashout_id=cashout_id, user_id=request.user_id):
                await self._process_locked(request)
            return request

    async def _process_locked(self, request: CashoutRequest) -> None:
        if request.channel_id:
            # An earlier attempt may have paid out; only that channel can dedupe the key.
            channel = self._registry.get_usable_channel(request.channel_id)
            if channel is None:
                logger.warning("Channel %s unavailable for retry of %s", request.channel_id, request.cashout_id)
                self._transition(request, S.ON_HOLD, f"Channel {request.channel_id} unavailable for retry")
                await self._store.save_cashout(request)
                return
            with LogContext(channel_id=channel.channel_id):
                await self._dispatch(request, channel)
            return

        channel = self._registry.select_channel(request.payment_method, request.net_amount)
        if channel is None:
            logger.warning("No channel available for %s", request.payment_method.value)
            await self._fail_locked(request, NO_PROVIDER_REASON)
            return

        request.channel_id = channel.channel_id
        with LogContext(channel_id=channel.channel_id):
            await self._dispatch(request, channel)

    async def _dispatch(self, request: CashoutRequest, channel: PayoutChannel) -> None:
        timeout = self._settings.channel_timeout_seconds
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(
                channel.initiate_payout(
                    idempotency_key=request.cashout_id,
                    amount=request.net_amount,
                    currency=request.currency,
                    destination=request.destination,
                    metadata={"user_id": request.user_id, "speed_tier": request.speed_tier.value},
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            latency_ms = (time.monotonic() - started) * 1000
            await self._registry.record_outcome(channel.channel_id, False, latency_ms)
            error = ChannelTimeoutError(channel.channel_id, timeout)
            logger.warning("Payout timed out: %s", error.message)
            self._transition(request, S.ON_HOLD, f"{error.message}; awaiting reconciliation")
            await self._store.save_cashout(request)
            return
        except Exception as e:
            latency_ms = (time.monotonic() - started) * 1000
            await self._registry.record_outcome(channel.channel_id, False, latency_ms)
            logger.exception("Channel %s raised during payout", channel.channel_id)
            await self._fail_locked(request, self._channel_reason(str(e) or type(e).__name__, False))
            return

        latency_ms = (time.monotonic() - started) * 1000
        if not result.success:
            await self._registry.record_outcome(channel.channel_id, False, latency_ms)
            await self._fail_locked(request, self._channel_reason(result.error, result.retryable))
            return

        await self._registry.record_outcome(channel.channel_id, True, latency_ms, amount=request.net_amount)
        request.channel_reference = result.channel_reference
        if result.estimated_arrival is not None:
            request.estimated_arrival = result.estimated_arrival
        # Persist the reference before marking sent so a crash leaves a cancellable trail.
        await self._store.save_cashout(request)
        self._transition(request, S.SENT)
        await self._store.save_cashout(request)

    @staticmethod
    def _channel_reason(error: Optional[str], retryable: bool) -> str:
        message = error or "Payout rejected by channel"
        if retryable or classify_channel_error(message):
            return f"{message} (retryable)"
        return message

    async def _refund(self, request: CashoutRequest) -> None:
        async with self._quota.user_lock(request.user_id):
            profile = await self._quota.get_or_create_profile(request.user_id)
            await self._quota.release(profile, request.amount)
            if request.free_instant_used:
                await self._quota.restore_free_instant(profile)

    async def _fail_locked(self, request: CashoutRequest, reason: str) -> None:
        self._transition(request, S.FAILED, reason)
        await self._store.save_cashout(request)
        await self._refund(request)
        async with self._quota.user_lock(request.user_id):
            profile = await self._quota.get_or_create_profile(request.user_id)
            await self._quota.record_failure(profile)

    # ------------------------------------------------------------------
    # Completion and reconciliation
    # ------------------------------------------------------------------

    async def complete(self, cashout_id: str) -> CashoutRequest:
        async with self._request_lock(cashout_id):
            request = await self._load(cashout_id)
            with LogContext(cashout_id=cashout_id, user_id=request.user_id):
                await self._complete_locked(request)
            return request

    async def _complete_locked(self, request: CashoutRequest, arrived_at: Optional[datetime] = None) -> None:
        if not can_transition(request.status, S.COMPLETED):
            raise InvalidTransitionError(request.cashout_id, request.status.value, S.COMPLETED.value)

        if not request.ledger_debited:
            try:
                await self._ledger.debit(request.user_id, request.amount, request.cashout_id)
            except Exception:
                logger.exception("Ledger debit failed for %s; will retry on next reconciliation", request.cashout_id)
                return
            request.ledger_debited = True
            await self._store.save_cashout(request)

        now = self._clock()
        request.actual_arrival = arrived_at or now
        request.processing_time = max(0.0, (request.actual_arrival - request.created_at).total_seconds())
        self._transition(request, S.COMPLETED)
        await self._store.save_cashout(request)

        async with self._quota.user_lock(request.user_id):
            profile = await self._quota.get_or_create_profile(request.user_id)
            await self._quota.record_completion(profile, request.amount, request.processing_time)

        account = await self._store.get_account(request.payment_account_id)
        if account is not None:
            account.total_withdrawals += 1
            account.total_amount += request.amount
            account.updated_at = now
            await self._store.save_account(account)

    async def reconcile_due(self) -> int:
        """
        Poll channels for every ``sent`` request past its estimated arrival.

        Returns:
            Number of requests moved to a terminal state
        """
        now = self._clock()
        settled = 0
        for candidate in await self._store.list_cashouts_by_status(S.SENT):
            if candidate.estimated_arrival is not None and candidate.estimated_arrival > now:
                continue
            try:
                if await self._reconcile_one(candidate.cashout_id):
                    settled += 1
            except Exception:
                logger.exception("Reconciliation failed for %s", candidate.cashout_id)
        if settled:
            logger.info("Reconciled %d cashouts", settled)
        return settled

    async def _reconcile_one(self, cashout_id: str) -> bool:
        async with self._request_lock(cashout_id):
            request = await self._load(cashout_id)
            if request.status != S.SENT or not request.channel_id or not request.channel_reference:
                return False
            channel = self._registry.get_channel(request.channel_id)
            if channel is None:
                logger.warning("Channel %s for %s is no longer registered", request.channel_id, cashout_id)
                return False

            with LogContext(cashout_id=cashout_id, user_id=request.user_id, channel_id=channel.channel_id):
                try:
                    status = await asyncio.wait_for(
                        channel.check_status(request.channel_reference),
                        timeout=self._settings.channel_timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    logger.warning("Status check timed out; leaving for next pass")
                    return False

                if status.completed:
                    await self._complete_locked(request, status.completed_at)
                    return request.status == S.COMPLETED
                if status.failed:
                    await self._fail_locked(request, status.error or f"Channel reported {status.status}")
                    return True
                return False

    # ------------------------------------------------------------------
    # Cancellation, review and reversal
    # ------------------------------------------------------------------

    async def cancel(self, cashout_id: str, user_id: str) -> CashoutRequest:
        async with self._request_lock(cashout_id):
            request = await self._load(cashout_id)
            if request.user_id != user_id:
                raise CashoutAuthorizationError("Not authorized to cancel this cashout")
            if request.status not in CANCELLABLE_STATUSES:
                raise InvalidTransitionError(cashout_id, request.status.value, S.CANCELLED.value)

            with LogContext(cashout_id=cashout_id, user_id=user_id):
                if request.channel_id and request.channel_reference:
                    channel = self._registry.get_channel(request.channel_id)
                    if channel is not None:
                        try:
                            result = await asyncio.wait_for(
                                channel.cancel_payout(request.channel_reference),
                                timeout=self._settings.channel_timeout_seconds,
                            )
                        except asyncio.TimeoutError:
                            raise CancellationRejectedError(
                                "Channel did not confirm the cancellation",
                                details={"cashout_id": cashout_id, "status": request.status.value},
                            )
                        if not result.success:
                            logger.info("Channel refused cancellation of %s: %s", cashout_id, result.error)
                            raise CancellationRejectedError(
                                result.error or "Unable to cancel cashout",
                                details={"cashout_id": cashout_id, "status": request.status.value},
                            )

                self._transition(request, S.CANCELLED, "Cancelled by user")
                await self._store.save_cashout(request)
                await self._refund(request)
            return request

    async def resolve_hold(self, cashout_id: str, approve: bool, reason: Optional[str] = None) -> CashoutRequest:
        """Apply a reviewer decision to a request parked in ``on_hold``."""
        async with self._request_lock(cashout_id):
            request = await self._load(cashout_id)
            if request.status != S.ON_HOLD:
                target = S.PROCESSING if approve else S.FAILED
                raise InvalidTransitionError(cashout_id, request.status.value, target.value)

            with LogContext(cashout_id=cashout_id, user_id=request.user_id):
                if approve and request.channel_id and self._registry.get_usable_channel(request.channel_id) is None:
                    raise ChannelError(
                        f"Channel {request.channel_id} is unavailable; cashout stays on hold",
                        channel_id=request.channel_id,
                        retryable=True,
                        details={"cashout_id": cashout_id},
                    )
                if approve:
                    self._transition(request, S.PROCESSING, reason or "Approved by reviewer")
                    await self._store.save_cashout(request)
                    await self._process_locked(request)
                else:
                    await self._fail_locked(request, reason or "Rejected by reviewer")
            return request

    async def reverse(self, cashout_id: str, reason: str) -> CashoutRequest:
        """Record an external reversal of a completed payout."""
        async with self._request_lock(cashout_id):
            request = await self._load(cashout_id)
            self._transition(request, S.REVERSED, reason)
            await self._store.save_cashout(request)
            return request

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_cashout(self, cashout_id: str, user_id: Optional[str] = None) -> CashoutRequest:
        request = await self._load(cashout_id)
        if user_id is not None and request.user_id != user_id:
            raise CashoutAuthorizationError("Not authorized to view this cashout")
        return request

    async def get_profile(self, user_id: str) -> UserCashoutProfile:
        async with self._quota.user_lock(user_id):
            return await self._quota.get_or_create_profile(user_id)

    async def get_fee_quote(
        self,
        user_id: str,
        amount: Decimal,
        method: PaymentMethod,
        speed_tier: SpeedTier = SpeedTier.FAST,
    ) -> Optional[FeeQuote]:
        profile = await self.get_profile(user_id)
        return self._fees.quote(to_cents(amount), method, speed_tier, profile)

    async def list_available_methods(self, user_id: str, amount: Optional[Decimal] = None) -> AvailableMethods:
        profile = await self.get_profile(user_id)
        methods = []
        for method in self._registry.list_available_methods(amount):
            tiers = self._fees.available_speed_tiers(method)
            if not tiers:
                continue
            methods.append(
                MethodAvailability(
                    method=method,
                    speed_tiers=tiers,
                    min_amount=self._settings.min_cashout_amount,
                    max_amount=profile.per_transaction_limit,
                    estimated_time=format_estimated_time(tiers[0].estimated_seconds),
                )
            )

        requests = await self._store.list_cashouts_by_user(user_id)
        return AvailableMethods(
            methods=methods,
            profile=profile,
            available_balance=await self._ledger.get_available_balance(user_id),
            pending_total=self._in_flight_total(requests),
        )

    async def get_history(
        self,
        user_id: str,
        filters: Optional[CashoutHistoryFilters] = None,
        limit: int = 20,
        cursor: Optional[str] = None,
    ) -> CashoutHistory:
        requests = await self._store.list_cashouts_by_user(user_id)
        return build_history(requests, filters, limit, cursor)

    # ------------------------------------------------------------------
    # Payment accounts and tiers
    # ------------------------------------------------------------------

    async def add_payment_account(
        self,
        user_id: str,
        method: PaymentMethod,
        details: DestinationDetails,
        nickname: Optional[str] = None,
        set_as_default: bool = False,
    ) -> PaymentAccount:
        profile = await self.get_profile(user_id)
        benefits = get_tier_benefits(profile.vip_tier)
        account = PaymentAccount(
            user_id=user_id,
            method=method,
            details=details,
            nickname=nickname,
            is_default=set_as_default,
            daily_limit=benefits.daily_limit,
            monthly_limit=benefits.monthly_limit,
            per_transaction_limit=benefits.per_transaction_limit,
            created_at=self._clock(),
            updated_at=self._clock(),
        )

        channel = self._registry.select_channel(method)
        if channel is None:
            logger.warning("No channel available to verify %s account for %s", method.value, user_id)
        else:
            try:
                verification = await asyncio.wait_for(
                    channel.verify_account(details),
                    timeout=self._settings.channel_timeout_seconds,
                )
            except Exception:
                logger.exception("Account verification via %s failed", channel.channel_id)
            else:
                account.is_verified = verification.is_valid
                if verification.is_valid:
                    account.status = AccountStatus.ACTIVE
                    if verification.holder_name and not details.holder_name:
                        details.holder_name = verification.holder_name
                else:
                    logger.info("Account verification rejected: %s", verification.error)

        if set_as_default:
            for other in await self._store.list_accounts(user_id):
                if other.is_default:
                    other.is_default = False
                    other.updated_at = self._clock()
                    await self._store.save_account(other)

        await self._store.save_account(account)
        logger.info("Added %s account %s for %s (%s)", method.value, account.account_id, user_id, account.status.value)
        return account

    async def get_payment_accounts(self, user_id: str) -> list[PaymentAccount]:
        accounts = await self._store.list_accounts(user_id)
        return sorted(accounts, key=lambda a: a.created_at)

    async def remove_payment_account(self, user_id: str, account_id: str) -> bool:
        account = await self._store.get_account(account_id)
        if account is None:
            return False
        if account.user_id != user_id:
            raise CashoutAuthorizationError("Not authorized to remove this account")
        return await self._store.delete_account(account_id)

    async def upgrade_tier(self, user_id: str, new_tier: VIPTier) -> UserCashoutProfile:
        async with self._quota.user_lock(user_id):
            profile = await self._quota.get_or_create_profile(user_id)
            return await self._quota.upgrade_tier(profile, new_tier)
