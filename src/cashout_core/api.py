"""Cashout API routes."""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .channels.registry import ChannelHealth
from .exceptions import CashoutException
from .fees import FeeQuote, format_estimated_time
from .history import CashoutHistoryFilters
from .models import (
    CashoutRequest,
    CashoutStatus,
    DestinationDetails,
    PaymentAccount,
    PaymentMethod,
    SpeedTier,
    UserCashoutProfile,
    VIPTier,
)
from .orchestrator import CashoutOrchestrator, InitiateCashoutRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cashouts"])


# Request/Response Models

class InitiateCashoutBody(BaseModel):
    """Request to withdraw funds."""
    amount: Decimal = Field(..., gt=0, description="Gross amount to withdraw")
    payment_account_id: str = Field(..., description="Destination account")
    speed_tier: SpeedTier = Field(default=SpeedTier.FAST)
    currency: str = Field(default="usd")
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_id: Optional[str] = None


class ResolveHoldBody(BaseModel):
    """Reviewer decision for a held cashout."""
    approve: bool
    reason: Optional[str] = None


class AddAccountBody(BaseModel):
    method: PaymentMethod
    details: dict = Field(default_factory=dict, description="Masked destination details")
    nickname: Optional[str] = None
    set_as_default: bool = False


class UpgradeTierBody(BaseModel):
    tier: VIPTier


class StatusChangeResponse(BaseModel):
    status: str
    timestamp: datetime
    reason: Optional[str] = None


class CashoutResponse(BaseModel):
    cashout_id: str
    user_id: str
    amount: str
    currency: str
    payment_method: str
    payment_account_id: str
    speed_tier: str
    fee: str
    base_fee: str
    percentage_fee: str
    vip_discount: str
    net_amount: str
    free_instant_used: bool
    status: str
    reason: Optional[str] = None
    status_history: List[StatusChangeResponse]
    channel_id: Optional[str] = None
    channel_reference: Optional[str] = None
    risk_score: int
    risk_flags: List[str]
    requires_manual_review: bool
    estimated_arrival: Optional[datetime] = None
    actual_arrival: Optional[datetime] = None
    processing_time: Optional[float] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_request(cls, r: CashoutRequest) -> "CashoutResponse":
        return cls(
            cashout_id=r.cashout_id,
            user_id=r.user_id,
            amount=str(r.amount),
            currency=r.currency,
            payment_method=r.payment_method.value,
            payment_account_id=r.payment_account_id,
            speed_tier=r.speed_tier.value,
            fee=str(r.fee),
            base_fee=str(r.base_fee),
            percentage_fee=str(r.percentage_fee),
            vip_discount=str(r.vip_discount),
            net_amount=str(r.net_amount),
            free_instant_used=r.free_instant_used,
            status=r.status.value,
            reason=r.last_reason,
            status_history=[
                StatusChangeResponse(status=c.status.value, timestamp=c.timestamp, reason=c.reason)
                for c in r.status_history
            ],
            channel_id=r.channel_id,
            channel_reference=r.channel_reference,
            risk_score=r.risk_score,
            risk_flags=list(r.risk_flags),
            requires_manual_review=r.requires_manual_review,
            estimated_arrival=r.estimated_arrival,
            actual_arrival=r.actual_arrival,
            processing_time=r.processing_time,
            created_at=r.created_at,
            updated_at=r.updated_at,
        )


class FeeQuoteResponse(BaseModel):
    method: str
    speed_tier: str
    amount: str
    base_fee: str
    percentage_fee: str
    vip_discount: str
    total_fee: str
    net_amount: str
    free_instant_used: bool
    estimated_time: str
    estimated_arrival: datetime
    valid_until: datetime

    @classmethod
    def from_quote(cls, q: FeeQuote) -> "FeeQuoteResponse":
        return cls(
            method=q.method.value,
            speed_tier=q.speed_tier.value,
            amount=str(q.amount),
            base_fee=str(q.base_fee),
            percentage_fee=str(q.percentage_fee),
            vip_discount=str(q.vip_discount),
            total_fee=str(q.total_fee),
            net_amount=str(q.net_amount),
            free_instant_used=q.free_instant_used,
            estimated_time=format_estimated_time(q.estimated_seconds),
            estimated_arrival=q.estimated_arrival,
            valid_until=q.valid_until,
        )


class ProfileResponse(BaseModel):
    user_id: str
    vip_tier: str
    daily_limit: str
    weekly_limit: str
    monthly_limit: str
    per_transaction_limit: str
    daily_used: str
    weekly_used: str
    monthly_used: str
    fee_discount: str
    free_instant_cashouts: int
    lifetime_withdrawals: int
    lifetime_volume: str

    @classmethod
    def from_profile(cls, p: UserCashoutProfile) -> "ProfileResponse":
        return cls(
            user_id=p.user_id,
            vip_tier=p.vip_tier.value,
            daily_limit=str(p.daily_limit),
            weekly_limit=str(p.weekly_limit),
            monthly_limit=str(p.monthly_limit),
            per_transaction_limit=str(p.per_transaction_limit),
            daily_used=str(p.daily_used),
            weekly_used=str(p.weekly_used),
            monthly_used=str(p.monthly_used),
            fee_discount=str(p.fee_discount),
            free_instant_cashouts=p.free_instant_cashouts,
            lifetime_withdrawals=p.lifetime_withdrawals,
            lifetime_volume=str(p.lifetime_volume),
        )


class SpeedTierResponse(BaseModel):
    tier: str
    flat_fee: str
    percentage_fee: str
    min_fee: str
    max_fee: str
    estimated_time: str


class MethodResponse(BaseModel):
    method: str
    speed_tiers: List[SpeedTierResponse]
    min_amount: str
    max_amount: str
    estimated_time: str
    is_available: bool


class AvailableMethodsResponse(BaseModel):
    methods: List[MethodResponse]
    profile: ProfileResponse
    available_balance: str
    pending_total: str


class HistoryStatsResponse(BaseModel):
    total_withdrawn: str
    avg_processing_time: float
    success_rate: float


class HistoryResponse(BaseModel):
    requests: List[CashoutResponse]
    total: int
    has_more: bool
    cursor: Optional[str] = None
    stats: HistoryStatsResponse


class AccountResponse(BaseModel):
    account_id: str
    user_id: str
    method: str
    details: dict
    nickname: Optional[str]
    is_default: bool
    is_verified: bool
    status: str
    per_transaction_limit: str
    total_withdrawals: int
    total_amount: str
    created_at: datetime

    @classmethod
    def from_account(cls, a: PaymentAccount) -> "AccountResponse":
        return cls(
            account_id=a.account_id,
            user_id=a.user_id,
            method=a.method.value,
            details=a.details.to_dict(),
            nickname=a.nickname,
            is_default=a.is_default,
            is_verified=a.is_verified,
            status=a.status.value,
            per_transaction_limit=str(a.per_transaction_limit),
            total_withdrawals=a.total_withdrawals,
            total_amount=str(a.total_amount),
            created_at=a.created_at,
        )


class ChannelHealthResponse(BaseModel):
    channel_id: str
    name: str
    methods: List[str]
    is_active: bool
    health_status: str
    avg_latency_ms: float
    success_rate: float
    priority: int

    @classmethod
    def from_health(cls, h: ChannelHealth) -> "ChannelHealthResponse":
        return cls(
            channel_id=h.channel_id,
            name=h.name,
            methods=[m.value for m in h.methods],
            is_active=h.is_active,
            health_status=h.health_status.value,
            avg_latency_ms=h.avg_latency_ms,
            success_rate=h.success_rate,
            priority=h.priority,
        )


# Dependencies

class CashoutDependencies:
    """Dependencies for cashout routes."""
    def __init__(self, orchestrator: CashoutOrchestrator):
        self.orchestrator = orchestrator


def get_deps() -> CashoutDependencies:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


# Routes

@router.post("/users/{user_id}/cashouts", response_model=CashoutResponse, status_code=status.HTTP_201_CREATED)
async def initiate_cashout(
    user_id: str,
    body: InitiateCashoutBody,
    deps: CashoutDependencies = Depends(get_deps),
):
    """Submit a withdrawal."""
    cashout = await deps.orchestrator.initiate(
        user_id,
        InitiateCashoutRequest(
            amount=body.amount,
            payment_account_id=body.payment_account_id,
            speed_tier=body.speed_tier,
            currency=body.currency,
        ),
        metadata={
            "ip_address": body.ip_address,
            "user_agent": body.user_agent,
            "device_id": body.device_id,
        },
    )
    return CashoutResponse.from_request(cashout)


@router.get("/users/{user_id}/cashouts/quote", response_model=FeeQuoteResponse)
async def get_fee_quote(
    user_id: str,
    amount: Decimal = Query(..., gt=0),
    method: PaymentMethod = Query(...),
    speed_tier: SpeedTier = Query(default=SpeedTier.FAST),
    deps: CashoutDependencies = Depends(get_deps),
):
    """Quote the fee for a prospective withdrawal."""
    quote = await deps.orchestrator.get_fee_quote(user_id, amount, method, speed_tier)
    if quote is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Speed tier {speed_tier.value} is not offered for {method.value}",
        )
    return FeeQuoteResponse.from_quote(quote)


@router.get("/users/{user_id}/cashouts/methods", response_model=AvailableMethodsResponse)
async def list_available_methods(
    user_id: str,
    amount: Optional[Decimal] = Query(None, gt=0),
    deps: CashoutDependencies = Depends(get_deps),
):
    available = await deps.orchestrator.list_available_methods(user_id, amount)
    return AvailableMethodsResponse(
        methods=[
            MethodResponse(
                method=m.method.value,
                speed_tiers=[
                    SpeedTierResponse(
                        tier=t.tier.value,
                        flat_fee=str(t.flat_fee),
                        percentage_fee=str(t.percentage_fee),
                        min_fee=str(t.min_fee),
                        max_fee=str(t.max_fee),
                        estimated_time=format_estimated_time(t.estimated_seconds),
                    )
                    for t in m.speed_tiers
                ],
                min_amount=str(m.min_amount),
                max_amount=str(m.max_amount),
                estimated_time=m.estimated_time,
                is_available=m.is_available,
            )
            for m in available.methods
        ],
        profile=ProfileResponse.from_profile(available.profile),
        available_balance=str(available.available_balance),
        pending_total=str(available.pending_total),
    )


@router.get("/users/{user_id}/cashouts", response_model=HistoryResponse)
async def get_history(
    user_id: str,
    status_filter: Optional[CashoutStatus] = Query(None, alias="status"),
    method: Optional[PaymentMethod] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    min_amount: Optional[Decimal] = Query(None),
    max_amount: Optional[Decimal] = Query(None),
    limit: int = Query(default=20, ge=1, le=100),
    cursor: Optional[str] = Query(None),
    deps: CashoutDependencies = Depends(get_deps),
):
    """List a user's cashouts, newest first, with summary stats."""
    history = await deps.orchestrator.get_history(
        user_id,
        CashoutHistoryFilters(
            status=status_filter,
            method=method,
            start_date=start_date,
            end_date=end_date,
            min_amount=min_amount,
            max_amount=max_amount,
        ),
        limit=limit,
        cursor=cursor,
    )
    return HistoryResponse(
        requests=[CashoutResponse.from_request(r) for r in history.requests],
        total=history.total,
        has_more=history.has_more,
        cursor=history.cursor,
        stats=HistoryStatsResponse(
            total_withdrawn=str(history.stats.total_withdrawn),
            avg_processing_time=history.stats.avg_processing_time,
            success_rate=history.stats.success_rate,
        ),
    )


@router.get("/users/{user_id}/cashouts/{cashout_id}", response_model=CashoutResponse)
async def get_cashout(
    user_id: str,
    cashout_id: str,
    deps: CashoutDependencies = Depends(get_deps),
):
    cashout = await deps.orchestrator.get_cashout(cashout_id, user_id=user_id)
    return CashoutResponse.from_request(cashout)


@router.post("/users/{user_id}/cashouts/{cashout_id}/cancel", response_model=CashoutResponse)
async def cancel_cashout(
    user_id: str,
    cashout_id: str,
    deps: CashoutDependencies = Depends(get_deps),
):
    """Cancel a cashout that has not been sent yet."""
    cashout = await deps.orchestrator.cancel(cashout_id, user_id)
    return CashoutResponse.from_request(cashout)


@router.post("/cashouts/{cashout_id}/review", response_model=CashoutResponse)
async def resolve_hold(
    cashout_id: str,
    body: ResolveHoldBody,
    deps: CashoutDependencies = Depends(get_deps),
):
    """Approve or reject a cashout held for manual review."""
    cashout = await deps.orchestrator.resolve_hold(cashout_id, body.approve, body.reason)
    return CashoutResponse.from_request(cashout)


@router.post("/users/{user_id}/accounts", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def add_payment_account(
    user_id: str,
    body: AddAccountBody,
    deps: CashoutDependencies = Depends(get_deps),
):
    account = await deps.orchestrator.add_payment_account(
        user_id,
        body.method,
        DestinationDetails.from_dict(body.details),
        nickname=body.nickname,
        set_as_default=body.set_as_default,
    )
    return AccountResponse.from_account(account)


@router.get("/users/{user_id}/accounts", response_model=List[AccountResponse])
async def list_payment_accounts(
    user_id: str,
    deps: CashoutDependencies = Depends(get_deps),
):
    accounts = await deps.orchestrator.get_payment_accounts(user_id)
    return [AccountResponse.from_account(a) for a in accounts]


@router.delete("/users/{user_id}/accounts/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_payment_account(
    user_id: str,
    account_id: str,
    deps: CashoutDependencies = Depends(get_deps),
):
    removed = await deps.orchestrator.remove_payment_account(user_id, account_id)
    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Account {account_id} not found",
        )


@router.post("/users/{user_id}/tier", response_model=ProfileResponse)
async def upgrade_tier(
    user_id: str,
    body: UpgradeTierBody,
    deps: CashoutDependencies = Depends(get_deps),
):
    profile = await deps.orchestrator.upgrade_tier(user_id, body.tier)
    return ProfileResponse.from_profile(profile)


@router.get("/channels", response_model=List[ChannelHealthResponse])
async def list_channels(
    deps: CashoutDependencies = Depends(get_deps),
):
    """Current channel health, in registration order."""
    return [ChannelHealthResponse.from_health(h) for h in deps.orchestrator.registry.list_health()]


# Application wiring

def register_exception_handlers(app: FastAPI) -> None:
    """Map the cashout exception hierarchy onto JSON error responses."""

    @app.exception_handler(CashoutException)
    async def cashout_exception_handler(request: Request, exc: CashoutException) -> JSONResponse:
        if exc.http_status >= 500:
            logger.error("Server error: %s - %s", exc.error_code, exc.message, extra={"path": request.url.path})
        else:
            logger.warning("Client error: %s - %s", exc.error_code, exc.message, extra={"path": request.url.path})
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def create_app(deps: CashoutDependencies, lifespan: Optional[Callable] = None) -> FastAPI:
    """Build a FastAPI app serving the cashout routes over ``deps``."""
    app = FastAPI(title="Cashout API", version="0.1.0", lifespan=lifespan)
    app.include_router(router, prefix="/api/v1")
    app.dependency_overrides[get_deps] = lambda: deps
    register_exception_handlers(app)
    return app
