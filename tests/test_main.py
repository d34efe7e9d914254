from __future__ import annotations

import logging
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from cashout_core.config import CashoutSettings
from cashout_core.ledger import InMemoryLedger
from cashout_core.main import build_orchestrator, create_service_app, create_store
from cashout_core.store import InMemoryCashoutStore, RedisCashoutStore


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_store_backend_follows_redis_url():
    assert isinstance(create_store(CashoutSettings(_env_file=None)), InMemoryCashoutStore)
    assert isinstance(
        create_store(CashoutSettings(_env_file=None, redis_url="redis://localhost:6379/0")),
        RedisCashoutStore,
    )


def test_orchestrator_registers_sandbox_channels_in_priority_order(clock):
    orchestrator = build_orchestrator(CashoutSettings(_env_file=None), clock=clock)

    health = orchestrator.registry.list_health()

    assert [(h.channel_id, h.priority) for h in health] == [
        ("card_push", 10),
        ("wallet", 20),
        ("crypto", 30),
        ("bank_transfer", 40),
    ]


def test_service_app_runs_scheduler_for_its_lifetime(restore_root_logger):
    settings = CashoutSettings(_env_file=None, log_json=False)
    app = create_service_app(settings, ledger=InMemoryLedger({"user_1": Decimal("100")}))

    with TestClient(app) as client:
        assert app.state.scheduler.is_running is True
        assert len(client.get("/api/v1/channels").json()) == 4

    assert app.state.scheduler.is_running is False


def test_unknown_environment_variables_are_ignored(monkeypatch):
    monkeypatch.setenv("CASHOUT_ENVIRONMENT", "prod")
    monkeypatch.setenv("CASHOUT_REVIEW_THRESHOLD", "70")

    settings = CashoutSettings(_env_file=None)

    assert settings.review_threshold == 70
    assert "environment" not in CashoutSettings.model_fields
