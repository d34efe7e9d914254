from __future__ import annotations

import logging
from decimal import Decimal

import pytest

from cashout_core.models import CashoutStatus
from cashout_core.orchestrator import InitiateCashoutRequest
from cashout_core.scheduler import HEALTH_JOB_ID, RECONCILE_JOB_ID, CompletionScheduler


class _BrokenOrchestrator:
    registry = None

    async def reconcile_due(self):
        raise RuntimeError("store offline")


def test_jobs_registered_on_construction(orchestrator, settings):
    scheduler = CompletionScheduler(orchestrator, settings)

    assert scheduler.job_ids == [RECONCILE_JOB_ID, HEALTH_JOB_ID]
    assert scheduler.is_running is False


@pytest.mark.asyncio
async def test_reconcile_job_completes_due_cashouts(orchestrator, settings, make_account, clock):
    account = await make_account()
    cashout = await orchestrator.initiate(
        "user_1", InitiateCashoutRequest(amount=Decimal("100"), payment_account_id=account.account_id)
    )
    scheduler = CompletionScheduler(orchestrator, settings)

    clock.advance(minutes=5)
    assert await scheduler.reconcile() == 1
    assert (await orchestrator.get_cashout(cashout.cashout_id)).status == CashoutStatus.COMPLETED


@pytest.mark.asyncio
async def test_reconcile_job_swallows_failures(settings, caplog):
    scheduler = CompletionScheduler(_BrokenOrchestrator(), settings)

    with caplog.at_level(logging.ERROR, logger="cashout_core.scheduler"):
        assert await scheduler.reconcile() == 0

    assert "store offline" in caplog.text


@pytest.mark.asyncio
async def test_health_job_reports_down_channels(orchestrator, settings, channels, caplog):
    channels["wallet"].healthy = False
    scheduler = CompletionScheduler(orchestrator, settings)

    with caplog.at_level(logging.WARNING, logger="cashout_core.scheduler"):
        await scheduler.check_health()

    assert "Channels down after health check: wallet" in caplog.text


@pytest.mark.asyncio
async def test_start_and_shutdown(orchestrator, settings):
    scheduler = CompletionScheduler(orchestrator, settings)

    await scheduler.start()
    assert scheduler.is_running is True

    await scheduler.shutdown(wait=False)
    assert scheduler.is_running is False
