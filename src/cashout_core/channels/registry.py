"""
Channel registry: health tracking and deterministic channel selection.

Health is an exponential moving average over observed payout outcomes plus
periodic health checks. Selection filters by method, activity, health and limits,
then orders by priority with registration order as the tie-break.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional

from ..models import PaymentMethod, utc_now
from .base import HealthStatus, PayoutChannel

logger = logging.getLogger(__name__)

DEFAULT_SMOOTHING_FACTOR = 0.1
DEFAULT_DEGRADED_BELOW = 80.0
DEFAULT_DOWN_BELOW = 50.0


@dataclass
class ChannelHealth:
    """Live health and capacity record for one registered channel."""
    channel_id: str
    name: str
    methods: tuple[PaymentMethod, ...]
    priority: int
    per_transaction_limit: Decimal
    daily_limit: Decimal
    registration_order: int
    is_active: bool = True
    health_status: HealthStatus = HealthStatus.HEALTHY
    last_health_check: Optional[datetime] = None
    avg_latency_ms: float = 0.0
    success_rate: float = 100.0
    daily_volume: Decimal = field(default_factory=lambda: Decimal("0"))
    daily_volume_date: Optional[date] = None

    @property
    def is_selectable(self) -> bool:
        return self.is_active and self.health_status != HealthStatus.DOWN

    def remaining_daily_capacity(self, today: date) -> Decimal:
        used = self.daily_volume if self.daily_volume_date == today else Decimal("0")
        return self.daily_limit - used

    def to_dict(self) -> dict:
        return {
            "channel_id": self.channel_id,
            "name": self.name,
            "methods": [m.value for m in self.methods],
            "is_active": self.is_active,
            "health_status": self.health_status.value,
            "last_health_check": self.last_health_check.isoformat() if self.last_health_check else None,
            "avg_latency_ms": round(self.avg_latency_ms, 2),
            "success_rate": round(self.success_rate, 2),
            "priority": self.priority,
            "per_transaction_limit": str(self.per_transaction_limit),
            "daily_limit": str(self.daily_limit),
            "daily_volume": str(self.daily_volume),
        }


def select_channel(
    channels: Iterable[PayoutChannel],
    health: dict[str, ChannelHealth],
    method: PaymentMethod,
    amount: Optional[Decimal] = None,
    today: Optional[date] = None,
) -> Optional[PayoutChannel]:
    """
    Pick the channel for a payout.

    Candidates support the method, are active and not down, and (when an
    amount is given) cover it with both their per-transaction limit and their
    remaining daily volume. The lowest priority value wins; ties go to the
    channel registered first.
    """
    candidates = []
    for channel in channels:
        record = health.get(channel.channel_id)
        if record is None or not record.is_selectable or not channel.supports(method):
            continue
        if amount is not None:
            if amount > record.per_transaction_limit:
                continue
            if today is not None and amount > record.remaining_daily_capacity(today):
                continue
        candidates.append((record.priority, record.registration_order, channel))

    if not candidates:
        return None
    candidates.sort(key=lambda item: (item[0], item[1]))
    return candidates[0][2]


class ChannelRegistry:
    """
    Registered payout channels with shared, lock-protected health state.

    Usage:
        registry = ChannelRegistry()
        registry.register(CardPushChannel(), priority=10)
        channel = registry.select_channel(PaymentMethod.DEBIT_CARD, Decimal("250"))
    """

    def __init__(
        self,
        *,
        smoothing_factor: float = DEFAULT_SMOOTHING_FACTOR,
        degraded_below: float = DEFAULT_DEGRADED_BELOW,
        down_below: float = DEFAULT_DOWN_BELOW,
        check_timeout_seconds: float = 5.0,
        default_per_transaction_limit: Decimal = Decimal("50000"),
        default_daily_limit: Decimal = Decimal("1000000"),
        clock: Callable[[], datetime] = utc_now,
    ):
        self._alpha = smoothing_factor
        self._degraded_below = degraded_below
        self._down_below = down_below
        self._check_timeout = check_timeout_seconds
        self._default_per_tx = default_per_transaction_limit
        self._default_daily = default_daily_limit
        self._clock = clock
        self._channels: dict[str, PayoutChannel] = {}
        self._health: dict[str, ChannelHealth] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], datetime] = utc_now) -> "ChannelRegistry":
        return cls(
            smoothing_factor=settings.health_smoothing_factor,
            degraded_below=settings.degraded_success_rate,
            down_below=settings.down_success_rate,
            check_timeout_seconds=settings.health_check_timeout_seconds,
            default_per_transaction_limit=settings.default_channel_per_transaction_limit,
            default_daily_limit=settings.default_channel_daily_limit,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        channel: PayoutChannel,
        priority: int = 100,
        per_transaction_limit: Optional[Decimal] = None,
        daily_limit: Optional[Decimal] = None,
    ) -> ChannelHealth:
        if channel.channel_id in self._channels:
            raise ValueError(f"Channel already registered: {channel.channel_id}")

        record = ChannelHealth(
            channel_id=channel.channel_id,
            name=channel.name,
            methods=tuple(channel.supported_methods),
            priority=priority,
            per_transaction_limit=per_transaction_limit if per_transaction_limit is not None else self._default_per_tx,
            daily_limit=daily_limit if daily_limit is not None else self._default_daily,
            registration_order=len(self._channels),
        )
        self._channels[channel.channel_id] = channel
        self._health[channel.channel_id] = record
        logger.info(
            "Registered channel %s (priority=%s, methods=%s)",
            channel.channel_id,
            priority,
            ",".join(m.value for m in record.methods),
        )
        return record

    def get_channel(self, channel_id: str) -> Optional[PayoutChannel]:
        return self._channels.get(channel_id)

    def get_health(self, channel_id: str) -> Optional[ChannelHealth]:
        return self._health.get(channel_id)

    def list_health(self) -> list[ChannelHealth]:
        return sorted(self._health.values(), key=lambda h: h.registration_order)

    def channels_for(self, method: PaymentMethod) -> list[PayoutChannel]:
        return [c for c in self._channels.values() if c.supports(method)]

    async def set_active(self, channel_id: str, active: bool) -> None:
        async with self._lock:
            record = self._health.get(channel_id)
            if record is None:
                raise KeyError(channel_id)
            record.is_active = active
        logger.info("Channel %s %s", channel_id, "enabled" if active else "disabled")

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_channel(
        self,
        method: PaymentMethod,
        amount: Optional[Decimal] = None,
    ) -> Optional[PayoutChannel]:
        return select_channel(
            self._channels.values(),
            self._health,
            method,
            amount,
            today=self._clock().date(),
        )

    def get_usable_channel(self, channel_id: str) -> Optional[PayoutChannel]:
        """The named channel if it is registered, active and not down."""
        record = self._health.get(channel_id)
        if record is None or not record.is_selectable:
            return None
        return self._channels.get(channel_id)

    def list_available_methods(self, amount: Optional[Decimal] = None) -> list[PaymentMethod]:
        """Methods with at least one healthy channel able to carry the amount."""
        available: list[PaymentMethod] = []
        for method in PaymentMethod:
            for channel in self.channels_for(method):
                record = self._health[channel.channel_id]
                if not record.is_active or record.health_status != HealthStatus.HEALTHY:
                    continue
                if amount is not None and amount > record.per_transaction_limit:
                    continue
                available.append(method)
                break
        return available

    # ------------------------------------------------------------------
    # Health updates
    # ------------------------------------------------------------------

    def _status_for(self, success_rate: float) -> HealthStatus:
        if success_rate < self._down_below:
            return HealthStatus.DOWN
        if success_rate < self._degraded_below:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    async def record_outcome(
        self,
        channel_id: str,
        success: bool,
        latency_ms: float,
        amount: Optional[Decimal] = None,
    ) -> None:
        """Fold one payout outcome into the channel's moving averages."""
        async with self._lock:
            record = self._health.get(channel_id)
            if record is None:
                logger.warning("Outcome reported for unknown channel %s", channel_id)
                return

            alpha = self._alpha
            record.avg_latency_ms = record.avg_latency_ms * (1 - alpha) + latency_ms * alpha
            sample = 100.0 if success else 0.0
            record.success_rate = record.success_rate * (1 - alpha) + sample * alpha

            previous = record.health_status
            record.health_status = self._status_for(record.success_rate)

            if success and amount is not None:
                today = self._clock().date()
                if record.daily_volume_date != today:
                    record.daily_volume = Decimal("0")
                    record.daily_volume_date = today
                record.daily_volume += amount

        if previous != record.health_status:
            logger.warning(
                "Channel %s health %s -> %s (success_rate=%.1f)",
                channel_id,
                previous.value,
                record.health_status.value,
                record.success_rate,
            )

    async def _check_channel(self, channel: PayoutChannel) -> None:
        channel_id = channel.channel_id
        try:
            result = await asyncio.wait_for(channel.health_check(), timeout=self._check_timeout)
        except asyncio.TimeoutError:
            logger.warning("Health check timed out for %s", channel_id)
            result = None
        except Exception as e:
            logger.warning("Health check failed for %s: %s", channel_id, e)
            result = None

        async with self._lock:
            record = self._health[channel_id]
            record.last_health_check = self._clock()
            if result is None or not result.healthy:
                record.health_status = HealthStatus.DOWN
                return
            alpha = self._alpha
            previous = record.health_status
            record.avg_latency_ms = record.avg_latency_ms * (1 - alpha) + result.latency_ms * alpha
            # A passing health check counts as a success and lifts the rate back
            # to the healthy band, otherwise a down channel is never routed to again.
            record.success_rate = max(
                record.success_rate * (1 - alpha) + 100.0 * alpha,
                self._degraded_below,
            )
            record.health_status = self._status_for(record.success_rate)

        if previous != record.health_status:
            logger.info("Channel %s recovered after health check (%s -> healthy)", channel_id, previous.value)

    async def check_all_health(self) -> list[ChannelHealth]:
        """Check every channel concurrently and return the updated records."""
        await asyncio.gather(*(self._check_channel(c) for c in self._channels.values()))
        return self.list_health()

    async def close(self) -> None:
        for channel in self._channels.values():
            await channel.close()
