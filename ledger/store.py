"""
Ledger Store - durable launch records with per-record serialization.

The production store is Redis: one JSON document per launch under
``launch:{id}`` plus a set index ``user:{owner}:launches``. Status changes
that precede a state-changing external call are serialized twice over:

- ``lock(id)``: non-blocking advisory lease (redis Lock with a timeout)
- ``compare_and_set_status``: WATCH/MULTI optimistic transaction

``InMemoryLedgerStore`` mirrors the same contract for tests and local runs.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import LockError, WatchError

from .models import LaunchRecord, now_ms

logger = logging.getLogger(__name__)


class RecordLockedError(Exception):
    """Raised when another request holds the record's lease."""

    def __init__(self, launch_id: str):
        super().__init__(f"Launch {launch_id} is locked by another request")
        self.launch_id = launch_id


class LedgerStore(Protocol):
    """Protocol for the launch ledger."""
    async def get(self, launch_id: str) -> Optional[LaunchRecord]: ...
    async def put(self, record: LaunchRecord) -> None: ...
    async def update_fields(self, launch_id: str, partial: Dict[str, Any]) -> Optional[LaunchRecord]: ...
    async def compare_and_set_status(
        self, launch_id: str, expected: str, new: str, partial: Optional[Dict[str, Any]] = None
    ) -> Optional[LaunchRecord]: ...
    async def list_owner(self, owner_id: str) -> List[LaunchRecord]: ...
    def lock(self, launch_id: str): ...


def apply_partial(record: LaunchRecord, partial: Dict[str, Any]) -> LaunchRecord:
    """
    Merge ``partial`` into ``record`` and stamp the mutation.

    Top-level keys replace; dict values for sub-records (mixing, trade,
    metadata) are merged key by key. ``id``, ``owner_id`` and the launch
    keypair can never be rewritten once set.
    """
    data = record.to_dict()
    for key, value in partial.items():
        if key in ("id", "owner_id", "created_at", "version"):
            continue
        if key in ("launch_address", "launch_secret_encrypted") and data.get(key):
            continue
        if isinstance(value, dict) and isinstance(data.get(key), dict):
            data[key] = {**data[key], **value}
        else:
            data[key] = value

    if record.trade.mint_address:
        data["trade"]["mint_address"] = record.trade.mint_address

    data["version"] = record.version + 1
    data["updated_at"] = max(now_ms(), record.updated_at)
    return LaunchRecord.from_dict(data)


def _launch_key(launch_id: str) -> str:
    return f"launch:{launch_id}"


def _owner_key(owner_id: str) -> str:
    return f"user:{owner_id}:launches"


class RedisLedgerStore:
    """Launch ledger backed by redis.asyncio."""

    UPDATE_RETRIES = 5

    def __init__(self, client: redis.Redis, lock_timeout: float = 180.0):
        """
        Args:
            client: redis.asyncio client (decode_responses=True)
            lock_timeout: Lease length in seconds; a crashed holder frees the record after this
        """
        self.redis = client
        self.lock_timeout = lock_timeout

    @classmethod
    def from_url(cls, url: str, lock_timeout: float = 180.0) -> "RedisLedgerStore":
        return cls(redis.from_url(url, decode_responses=True), lock_timeout=lock_timeout)

    async def get(self, launch_id: str) -> Optional[LaunchRecord]:
        raw = await self.redis.get(_launch_key(launch_id))
        if not raw:
            return None
        return LaunchRecord.from_dict(json.loads(raw))

    async def put(self, record: LaunchRecord) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(_launch_key(record.id), json.dumps(record.to_dict()))
            pipe.sadd(_owner_key(record.owner_id), record.id)
            await pipe.execute()

    async def update_fields(self, launch_id: str, partial: Dict[str, Any]) -> Optional[LaunchRecord]:
        return await self._transact(launch_id, partial)

    async def compare_and_set_status(
        self,
        launch_id: str,
        expected: str,
        new: str,
        partial: Optional[Dict[str, Any]] = None,
    ) -> Optional[LaunchRecord]:
        changes = dict(partial or {})
        changes["overall_status"] = new
        return await self._transact(launch_id, changes, expected_status=expected)

    async def _transact(
        self,
        launch_id: str,
        partial: Dict[str, Any],
        expected_status: Optional[str] = None,
    ) -> Optional[LaunchRecord]:
        key = _launch_key(launch_id)

        for attempt in range(self.UPDATE_RETRIES):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if not raw:
                        return None

                    current = LaunchRecord.from_dict(json.loads(raw))
                    if expected_status is not None and current.overall_status != expected_status:
                        logger.info(
                            f"CAS rejected for {launch_id[:8]}...: "
                            f"expected={expected_status} actual={current.overall_status}"
                        )
                        return None

                    updated = apply_partial(current, partial)
                    pipe.multi()
                    pipe.set(key, json.dumps(updated.to_dict()))
                    await pipe.execute()
                    return updated

                except WatchError:
                    if expected_status is not None:
                        return None
                    logger.debug(f"Concurrent write on {launch_id[:8]}..., retry {attempt + 1}")

        raise RuntimeError(f"Could not update launch {launch_id} after {self.UPDATE_RETRIES} attempts")

    async def list_owner(self, owner_id: str) -> List[LaunchRecord]:
        ids = await self.redis.smembers(_owner_key(owner_id))
        records = await asyncio.gather(*(self.get(launch_id) for launch_id in ids))
        return [r for r in records if r is not None]

    @asynccontextmanager
    async def lock(self, launch_id: str) -> AsyncIterator[None]:
        lease = self.redis.lock(f"lock:launch:{launch_id}", timeout=self.lock_timeout, blocking=False)
        if not await lease.acquire():
            raise RecordLockedError(launch_id)
        try:
            yield
        finally:
            try:
                await lease.release()
            except LockError:
                logger.warning(f"Lease on launch {launch_id[:8]}... expired before release")


class InMemoryLedgerStore:
    """Process-local ledger with the same semantics as RedisLedgerStore."""

    def __init__(self):
        self._docs: Dict[str, str] = {}
        self._owners: Dict[str, set] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def get(self, launch_id: str) -> Optional[LaunchRecord]:
        raw = self._docs.get(launch_id)
        return LaunchRecord.from_dict(json.loads(raw)) if raw else None

    async def put(self, record: LaunchRecord) -> None:
        self._docs[record.id] = json.dumps(record.to_dict())
        self._owners.setdefault(record.owner_id, set()).add(record.id)

    async def update_fields(self, launch_id: str, partial: Dict[str, Any]) -> Optional[LaunchRecord]:
        current = await self.get(launch_id)
        if current is None:
            return None
        updated = apply_partial(current, partial)
        self._docs[launch_id] = json.dumps(updated.to_dict())
        return updated

    async def compare_and_set_status(
        self,
        launch_id: str,
        expected: str,
        new: str,
        partial: Optional[Dict[str, Any]] = None,
    ) -> Optional[LaunchRecord]:
        current = await self.get(launch_id)
        if current is None or current.overall_status != expected:
            return None
        changes = dict(partial or {})
        changes["overall_status"] = new
        return await self.update_fields(launch_id, changes)

    async def list_owner(self, owner_id: str) -> List[LaunchRecord]:
        records = [await self.get(launch_id) for launch_id in self._owners.get(owner_id, ())]
        return [r for r in records if r is not None]

    @asynccontextmanager
    async def lock(self, launch_id: str) -> AsyncIterator[None]:
        lease = self._locks.setdefault(launch_id, asyncio.Lock())
        if lease.locked():
            raise RecordLockedError(launch_id)
        async with lease:
            yield
