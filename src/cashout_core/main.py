"""Service composition root."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI

from .api import CashoutDependencies, create_app
from .channels import ChannelRegistry, create_sandbox_channels
from .config import CashoutSettings, load_settings
from .ledger import InMemoryLedger, LedgerPort
from .logging_config import setup_logging
from .models import utc_now
from .orchestrator import CashoutOrchestrator
from .scheduler import CompletionScheduler
from .store import CashoutStore, InMemoryCashoutStore, RedisCashoutStore

logger = logging.getLogger(__name__)


def create_store(settings: CashoutSettings) -> CashoutStore:
    if settings.redis_url:
        return RedisCashoutStore.from_url(settings.redis_url)
    return InMemoryCashoutStore()


def build_orchestrator(
    settings: Optional[CashoutSettings] = None,
    *,
    store: Optional[CashoutStore] = None,
    ledger: Optional[LedgerPort] = None,
    clock: Callable[[], datetime] = utc_now,
) -> CashoutOrchestrator:
    """Wire an orchestrator over the sandbox channel set."""
    settings = settings or load_settings()
    registry = ChannelRegistry.from_settings(settings, clock=clock)
    for position, channel in enumerate(create_sandbox_channels(clock)):
        registry.register(channel, priority=(position + 1) * 10)

    return CashoutOrchestrator(
        store=store or create_store(settings),
        registry=registry,
        ledger=ledger or InMemoryLedger(),
        settings=settings,
        clock=clock,
    )


def create_service_app(
    settings: Optional[CashoutSettings] = None,
    *,
    store: Optional[CashoutStore] = None,
    ledger: Optional[LedgerPort] = None,
) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(settings.log_level, json_format=settings.log_json)

    store = store or create_store(settings)
    orchestrator = build_orchestrator(settings, store=store, ledger=ledger)
    scheduler = CompletionScheduler(orchestrator, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await scheduler.start()
        logger.info("Cashout service started (store=%s)", type(store).__name__)
        try:
            yield
        finally:
            logger.info("Cashout service shutting down")
            await scheduler.shutdown(wait=False)
            await orchestrator.registry.close()
            if isinstance(store, RedisCashoutStore):
                await store.close()

    app = create_app(CashoutDependencies(orchestrator), lifespan=lifespan)
    app.state.scheduler = scheduler
    return app
