"""
Persistence for cashout requests, user profiles and payment accounts.

The orchestrator only depends on the ``CashoutStore`` protocol. Two
implementations ship: an in-memory store for development and tests, and a
Redis-backed store for deployments with more than one worker.
"""
from __future__ import annotations

import json
import logging
from contextlib import nullcontext
from typing import Any, AsyncContextManager, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from .models import CashoutRequest, CashoutStatus, PaymentAccount, UserCashoutProfile

logger = logging.getLogger(__name__)


class CashoutStore(Protocol):
    async def save_cashout(self, request: CashoutRequest) -> None: ...

    async def get_cashout(self, cashout_id: str) -> Optional[CashoutRequest]: ...

    async def list_cashouts_by_user(self, user_id: str) -> list[CashoutRequest]: ...

    async def list_cashouts_by_status(self, status: CashoutStatus) -> list[CashoutRequest]: ...

    def profile_lock(self, user_id: str) -> AsyncContextManager[Any]:
        """Exclusive access to a profile across every process sharing the store."""
        ...

    async def save_profile(self, profile: UserCashoutProfile) -> None: ...

    async def get_profile(self, user_id: str) -> Optional[UserCashoutProfile]: ...

    async def save_account(self, account: PaymentAccount) -> None: ...

    async def get_account(self, account_id: str) -> Optional[PaymentAccount]: ...

    async def list_accounts(self, user_id: str) -> list[PaymentAccount]: ...

    async def delete_account(self, account_id: str) -> bool: ...


class InMemoryCashoutStore:
    """Dict-backed store. Records are copied on the way in and out."""

    def __init__(self) -> None:
        self._requests: dict[str, dict] = {}
        self._profiles: dict[str, dict] = {}
        self._accounts: dict[str, dict] = {}

    async def save_cashout(self, request: CashoutRequest) -> None:
        self._requests[request.cashout_id] = request.to_dict()

    async def get_cashout(self, cashout_id: str) -> Optional[CashoutRequest]:
        data = self._requests.get(cashout_id)
        return CashoutRequest.from_dict(data) if data else None

    async def list_cashouts_by_user(self, user_id: str) -> list[CashoutRequest]:
        return [CashoutRequest.from_dict(d) for d in self._requests.values() if d["user_id"] == user_id]

    async def list_cashouts_by_status(self, status: CashoutStatus) -> list[CashoutRequest]:
        return [CashoutRequest.from_dict(d) for d in self._requests.values() if d["status"] == status.value]

    def profile_lock(self, user_id: str) -> AsyncContextManager[Any]:
        # Single process: the tracker's asyncio lock already serializes access.
        return nullcontext()

    async def save_profile(self, profile: UserCashoutProfile) -> None:
        self._profiles[profile.user_id] = profile.to_dict()

    async def get_profile(self, user_id: str) -> Optional[UserCashoutProfile]:
        data = self._profiles.get(user_id)
        return UserCashoutProfile.from_dict(data) if data else None

    async def save_account(self, account: PaymentAccount) -> None:
        self._accounts[account.account_id] = account.to_dict()

    async def get_account(self, account_id: str) -> Optional[PaymentAccount]:
        data = self._accounts.get(account_id)
        return PaymentAccount.from_dict(data) if data else None

    async def list_accounts(self, user_id: str) -> list[PaymentAccount]:
        return [PaymentAccount.from_dict(d) for d in self._accounts.values() if d["user_id"] == user_id]

    async def delete_account(self, account_id: str) -> bool:
        return self._accounts.pop(account_id, None) is not None


class RedisCashoutStore:
    """
    Redis-backed store.

    Records are JSON documents; per-user and per-status sets index them.
    A record and its index entries are written in one MULTI/EXEC so the
    status index cannot drift from the record. Profile read-modify-write
    cycles run under a Redis lock per user, shared by all workers.

    Usage:
        store = RedisCashoutStore.from_url("redis://localhost:6379/0")
        await store.save_cashout(request)
        sent = await store.list_cashouts_by_status(CashoutStatus.SENT)
    """

    # Seconds before an abandoned profile lock expires
    LOCK_TIMEOUT = 30
    # Seconds a worker waits for a profile lock before giving up
    LOCK_WAIT = 10

    def __init__(self, client: aioredis.Redis, namespace: str = "cashout"):
        self._redis = client
        self._namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "cashout") -> "RedisCashoutStore":
        return cls(aioredis.from_url(url, decode_responses=True), namespace=namespace)

    def _key(self, *parts: str) -> str:
        return ":".join((self._namespace, *parts))

    async def _load_many(self, index_key: str, kind: str) -> list[dict]:
        ids = await self._redis.smembers(index_key)
        records = []
        for record_id in sorted(ids):
            raw = await self._redis.get(self._key(kind, record_id))
            if raw is None:
                logger.warning("Dangling %s index entry %s in %s", kind, record_id, index_key)
                continue
            records.append(json.loads(raw))
        return records

    # Requests

    async def save_cashout(self, request: CashoutRequest) -> None:
        key = self._key("request", request.cashout_id)
        payload = json.dumps(request.to_dict())
        status = request.status.value

        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    previous = await pipe.get(key)
                    pipe.multi()
                    pipe.set(key, payload)
                    pipe.sadd(self._key("user", request.user_id, "requests"), request.cashout_id)
                    if previous is not None:
                        old_status = json.loads(previous)["status"]
                        if old_status != status:
                            pipe.srem(self._key("status", old_status), request.cashout_id)
                    pipe.sadd(self._key("status", status), request.cashout_id)
                    await pipe.execute()
                    return
                except WatchError:
                    logger.debug("Concurrent write to %s, retrying", key)

    async def get_cashout(self, cashout_id: str) -> Optional[CashoutRequest]:
        raw = await self._redis.get(self._key("request", cashout_id))
        return CashoutRequest.from_dict(json.loads(raw)) if raw else None

    async def list_cashouts_by_user(self, user_id: str) -> list[CashoutRequest]:
        records = await self._load_many(self._key("user", user_id, "requests"), "request")
        return [CashoutRequest.from_dict(r) for r in records]

    async def list_cashouts_by_status(self, status: CashoutStatus) -> list[CashoutRequest]:
        records = await self._load_many(self._key("status", status.value), "request")
        return [CashoutRequest.from_dict(r) for r in records]

    # Profiles

    def profile_lock(self, user_id: str) -> AsyncContextManager[Any]:
        return self._redis.lock(
            self._key("lock", "profile", user_id),
            timeout=self.LOCK_TIMEOUT,
            blocking_timeout=self.LOCK_WAIT,
        )

    async def save_profile(self, profile: UserCashoutProfile) -> None:
        await self._redis.set(self._key("profile", profile.user_id), json.dumps(profile.to_dict()))

    async def get_profile(self, user_id: str) -> Optional[UserCashoutProfile]:
        raw = await self._redis.get(self._key("profile", user_id))
        return UserCashoutProfile.from_dict(json.loads(raw)) if raw else None

    # Accounts

    async def save_account(self, account: PaymentAccount) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(self._key("account", account.account_id), json.dumps(account.to_dict()))
            pipe.sadd(self._key("user", account.user_id, "accounts"), account.account_id)
            await pipe.execute()

    async def get_account(self, account_id: str) -> Optional[PaymentAccount]:
        raw = await self._redis.get(self._key("account", account_id))
        return PaymentAccount.from_dict(json.loads(raw)) if raw else None

    async def list_accounts(self, user_id: str) -> list[PaymentAccount]:
        records = await self._load_many(self._key("user", user_id, "accounts"), "account")
        return [PaymentAccount.from_dict(r) for r in records]

    async def delete_account(self, account_id: str) -> bool:
        account = await self.get_account(account_id)
        if account is None:
            return False
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._key("account", account_id))
            pipe.srem(self._key("user", account.user_id, "accounts"), account_id)
            await pipe.execute()
        return True

    async def close(self) -> None:
        await self._redis.aclose()
