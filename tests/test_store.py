from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from redis.exceptions import WatchError

from cashout_core.exceptions import QuotaExceededError
from cashout_core.models import CashoutStatus, PaymentAccount, PaymentMethod, StatusChange
from cashout_core.quota import QuotaTracker
from cashout_core.store import InMemoryCashoutStore, RedisCashoutStore

from conftest import destination_for, forge_request


class FakePipeline:
    """Buffers commands after ``multi()`` and applies them on ``execute()``."""

    def __init__(self, client: "FakeRedis"):
        self._client = client
        self._queued: list[tuple[str, tuple]] = []
        self.watched: list[str] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.reset()

    async def watch(self, *keys):
        self.watched.extend(keys)

    async def get(self, key):
        return await self._client.get(key)

    def multi(self):
        self._queued.clear()

    def _queue(self, name, *args):
        self._queued.append((name, args))
        return self

    def set(self, key, value):
        return self._queue("set", key, value)

    def delete(self, key):
        return self._queue("delete", key)

    def sadd(self, key, member):
        return self._queue("sadd", key, member)

    def srem(self, key, member):
        return self._queue("srem", key, member)

    async def execute(self):
        queued, self._queued = self._queued, []
        self._client.executions += 1
        if self._client.conflicts:
            self._client.conflicts -= 1
            raise WatchError("watched key changed")
        return [await getattr(self._client, name)(*args) for name, args in queued]

    async def reset(self):
        self._queued.clear()
        self.watched.clear()


class FakeLock:
    def __init__(self, client: "FakeRedis", name: str):
        self._client = client
        self._name = name

    async def __aenter__(self):
        await self._client.lock_for(self._name).acquire()
        self._client.lock_log.append(self._name)
        return self

    async def __aexit__(self, *args):
        self._client.lock_for(self._name).release()


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the store."""

    def __init__(self):
        self.values: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.closed = False
        self.executions = 0
        # Number of upcoming EXECs that fail as if a watched key changed
        self.conflicts = 0
        self.lock_log: list[str] = []
        self._locks: dict[str, asyncio.Lock] = {}

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value):
        self.values[key] = value

    async def delete(self, key):
        return 1 if self.values.pop(key, None) is not None else 0

    async def sadd(self, key, member):
        self.sets.setdefault(key, set()).add(member)

    async def srem(self, key, member):
        self.sets.get(key, set()).discard(member)

    async def smembers(self, key):
        return set(self.sets.get(key, set()))

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def lock_for(self, name) -> asyncio.Lock:
        return self._locks.setdefault(name, asyncio.Lock())

    def lock(self, name, timeout=None, blocking_timeout=None):
        return FakeLock(self, name)

    async def aclose(self):
        self.closed = True


def _move(request, status, clock):
    request.status_history.append(StatusChange(status=status, timestamp=clock()))
    request.status = status


@pytest.fixture(params=["memory", "redis"])
def any_store(request):
    if request.param == "memory":
        return InMemoryCashoutStore()
    return RedisCashoutStore(FakeRedis(), namespace="test")


@pytest.mark.asyncio
async def test_status_index_follows_transitions(any_store, clock):
    request = forge_request(clock)
    await any_store.save_cashout(request)
    assert [r.cashout_id for r in await any_store.list_cashouts_by_status(CashoutStatus.PENDING)] == [request.cashout_id]

    _move(request, CashoutStatus.SENT, clock)
    await any_store.save_cashout(request)

    assert await any_store.list_cashouts_by_status(CashoutStatus.PENDING) == []
    assert [r.cashout_id for r in await any_store.list_cashouts_by_status(CashoutStatus.SENT)] == [request.cashout_id]


@pytest.mark.asyncio
async def test_saved_records_are_copies(any_store, clock):
    request = forge_request(clock)
    await any_store.save_cashout(request)

    request.status = CashoutStatus.FAILED
    loaded = await any_store.get_cashout(request.cashout_id)

    assert loaded.status == CashoutStatus.PENDING
    assert loaded.destination == request.destination
    assert loaded.amount == request.amount


@pytest.mark.asyncio
async def test_requests_are_listed_per_user(any_store, clock):
    mine = forge_request(clock, user_id="user_1")
    theirs = forge_request(clock, user_id="user_2")
    await any_store.save_cashout(mine)
    await any_store.save_cashout(theirs)

    assert [r.cashout_id for r in await any_store.list_cashouts_by_user("user_1")] == [mine.cashout_id]
    assert await any_store.get_cashout("cashout_missing") is None


@pytest.mark.asyncio
async def test_profiles_survive_storage(any_store, clock):
    tracker = QuotaTracker(any_store, clock=clock)
    profile = await tracker.get_or_create_profile("user_1")
    profile.lifetime_withdrawals = 4
    await any_store.save_profile(profile)

    loaded = await any_store.get_profile("user_1")

    assert loaded.lifetime_withdrawals == 4
    assert loaded.daily_reset_at == profile.daily_reset_at
    assert await any_store.get_profile("user_2") is None


@pytest.mark.asyncio
async def test_account_index_and_delete(any_store, clock):
    account = PaymentAccount(
        user_id="user_1",
        method=PaymentMethod.PAYPAL,
        details=destination_for(PaymentMethod.PAYPAL),
        created_at=clock(),
        updated_at=clock(),
    )
    await any_store.save_account(account)

    assert [a.account_id for a in await any_store.list_accounts("user_1")] == [account.account_id]
    assert (await any_store.get_account(account.account_id)).details.email == "jane@example.com"

    assert await any_store.delete_account(account.account_id) is True
    assert await any_store.delete_account(account.account_id) is False
    assert await any_store.list_accounts("user_1") == []


@pytest.mark.asyncio
async def test_redis_keys_are_namespaced(clock):
    client = FakeRedis()
    store = RedisCashoutStore(client, namespace="svc")
    request = forge_request(clock)

    await store.save_cashout(request)
    await store.close()

    assert f"svc:request:{request.cashout_id}" in client.values
    assert client.sets["svc:user:user_1:requests"] == {request.cashout_id}
    assert client.sets["svc:status:pending"] == {request.cashout_id}
    assert client.closed is True


@pytest.mark.asyncio
async def test_redis_save_retries_when_record_changes_underneath(clock):
    client = FakeRedis()
    store = RedisCashoutStore(client, namespace="svc")
    request = forge_request(clock)
    await store.save_cashout(request)

    client.conflicts = 1
    _move(request, CashoutStatus.SENT, clock)
    await store.save_cashout(request)

    assert client.executions == 3
    assert client.sets["svc:status:pending"] == set()
    assert client.sets["svc:status:sent"] == {request.cashout_id}
    assert (await store.get_cashout(request.cashout_id)).status == CashoutStatus.SENT


@pytest.mark.asyncio
async def test_profile_lock_is_shared_between_workers(clock):
    client = FakeRedis()
    workers = [QuotaTracker(RedisCashoutStore(client, namespace="svc"), clock=clock) for _ in range(2)]

    async def attempt(tracker):
        async with tracker.user_lock("user_1"):
            profile = await tracker.get_or_create_profile("user_1")
            await asyncio.sleep(0)
            await tracker.reserve(profile, Decimal("2000"))

    results = await asyncio.gather(
        attempt(workers[0]), attempt(workers[1]), attempt(workers[0]), return_exceptions=True
    )

    assert len([r for r in results if isinstance(r, QuotaExceededError)]) == 1
    assert (await workers[1].get_or_create_profile("user_1")).daily_used == Decimal("4000")
    assert set(client.lock_log) == {"svc:lock:profile:user_1"}


@pytest.mark.asyncio
async def test_memory_profile_lock_nests_without_blocking(clock):
    store = InMemoryCashoutStore()

    async with store.profile_lock("user_1"):
        async with store.profile_lock("user_1"):
            assert await store.get_profile("user_1") is None
