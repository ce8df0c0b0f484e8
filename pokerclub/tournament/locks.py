"""
Locking for concurrent operator actions.

Dealer, floor manager and accountant act on the same game from different
devices. Every mutation takes the locks of the resources it rewrites:

- lock:game:{id}               clock state, sessions, prize pool
- lock:game:{id}:tables        seat allocation and table layout
- lock:club:{id}:treasury      club ledger, treasury and player balances
- lock:network                 played-together edges (shared across games)

Locks are acquired in sorted key order, so two operations needing the same
pair can never deadlock. ``LocalLockManager`` serves a single authoritative
process; ``DistributedLockManager`` does the same over Redis.
"""

import asyncio
import hashlib
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncGenerator, Dict, List, Optional, Sequence, Set, Tuple
from uuid import uuid4

import redis.asyncio as redis

from pokerclub.logging_config import get_logger
from pokerclub.utils.errors import LockAcquisitionError

logger = get_logger(__name__)


class LockScope(Enum):
    """Lock granularity types."""

    GAME = "game"
    TABLES = "tables"
    TREASURY = "treasury"
    NETWORK = "network"


LockRequest = Tuple[LockScope, Optional[str]]


def make_lock_key(scope: LockScope, resource_id: Optional[str] = None) -> str:
    """Redis-style key for a lock scope."""
    if scope == LockScope.GAME:
        return f"lock:game:{resource_id}"
    if scope == LockScope.TABLES:
        return f"lock:game:{resource_id}:tables"
    if scope == LockScope.TREASURY:
        return f"lock:club:{resource_id}:treasury"
    return "lock:network"


@dataclass
class LockInfo:
    """Lock metadata."""

    lock_key: str
    owner_id: str
    acquired_at: float
    expires_at: float
    scope: LockScope


class LockManager(ABC):
    """Common acquire/release contract plus the context managers built on it."""

    def __init__(
        self,
        default_lock_timeout_ms: int = 10000,
        default_acquire_timeout_ms: int = 5000,
    ):
        self.default_lock_timeout_ms = default_lock_timeout_ms
        self.default_acquire_timeout_ms = default_acquire_timeout_ms

    @abstractmethod
    async def acquire(
        self,
        scope: LockScope,
        resource_id: Optional[str] = None,
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> LockInfo:
        ...

    @abstractmethod
    async def release(self, lock_info: LockInfo) -> bool:
        ...

    @asynccontextmanager
    async def lock(
        self,
        scope: LockScope,
        resource_id: Optional[str] = None,
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> AsyncGenerator[LockInfo, None]:
        """
        Hold one lock for the duration of the block.

        ```python
        async with locks.lock(LockScope.GAME, game_id):
            ...
        ```
        """
        lock_info = await self.acquire(
            scope, resource_id, lock_timeout_ms, acquire_timeout_ms
        )
        try:
            yield lock_info
        finally:
            await self.release(lock_info)

    @asynccontextmanager
    async def lock_many(
        self,
        requests: Sequence[LockRequest],
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> AsyncGenerator[List[LockInfo], None]:
        """
        Acquire several locks in sorted key order.

        ─────────────────────────────────────────────────────────────
        If A takes game->treasury while B takes treasury->game, each
        waits on the other forever. Sorting by key makes every caller
        use the same order; the first to arrive gets all of them.
        A partial acquisition is released before the error propagates.
        ─────────────────────────────────────────────────────────────
        """
        unique: Dict[str, LockRequest] = {}
        for scope, resource_id in requests:
            unique[make_lock_key(scope, resource_id)] = (scope, resource_id)

        acquired: List[LockInfo] = []
        try:
            for key in sorted(unique):
                scope, resource_id = unique[key]
                acquired.append(
                    await self.acquire(
                        scope, resource_id, lock_timeout_ms, acquire_timeout_ms
                    )
                )
            yield acquired
        finally:
            for lock_info in reversed(acquired):
                await self.release(lock_info)


class LocalLockManager(LockManager):
    """asyncio locks for a single authoritative process."""

    def __init__(
        self,
        default_lock_timeout_ms: int = 10000,
        default_acquire_timeout_ms: int = 5000,
    ):
        super().__init__(default_lock_timeout_ms, default_acquire_timeout_ms)
        self._locks: Dict[str, asyncio.Lock] = {}
        # Holders plus waiters per key; a lock is dropped when this reaches zero
        self._users: Dict[str, int] = {}

    def _checkout(self, lock_key: str) -> asyncio.Lock:
        lock = self._locks.get(lock_key)
        if lock is None:
            lock = self._locks[lock_key] = asyncio.Lock()
        self._users[lock_key] = self._users.get(lock_key, 0) + 1
        return lock

    def _checkin(self, lock_key: str) -> None:
        remaining = self._users.get(lock_key, 0) - 1
        if remaining > 0:
            self._users[lock_key] = remaining
        else:
            self._users.pop(lock_key, None)
            self._locks.pop(lock_key, None)

    async def acquire(
        self,
        scope: LockScope,
        resource_id: Optional[str] = None,
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> LockInfo:
        lock_key = make_lock_key(scope, resource_id)
        acquire_timeout = acquire_timeout_ms or self.default_acquire_timeout_ms
        lock_timeout = lock_timeout_ms or self.default_lock_timeout_ms

        try:
            await asyncio.wait_for(
                self._checkout(lock_key).acquire(), timeout=acquire_timeout / 1000
            )
        except asyncio.TimeoutError:
            self._checkin(lock_key)
            logger.warning("lock_acquire_timeout", lock_key=lock_key, timeout_ms=acquire_timeout)
            raise LockAcquisitionError(lock_key, acquire_timeout)
        except asyncio.CancelledError:
            self._checkin(lock_key)
            raise

        now = time.time()
        return LockInfo(
            lock_key=lock_key,
            owner_id=uuid4().hex,
            acquired_at=now,
            expires_at=now + lock_timeout / 1000,
            scope=scope,
        )

    async def release(self, lock_info: LockInfo) -> bool:
        lock = self._locks.get(lock_info.lock_key)
        if lock is None or not lock.locked():
            return False
        lock.release()
        self._checkin(lock_info.lock_key)
        return True

    async def is_locked(self, scope: LockScope, resource_id: Optional[str] = None) -> bool:
        lock = self._locks.get(make_lock_key(scope, resource_id))
        return lock is not None and lock.locked()


class DistributedLockManager(LockManager):
    """
    Redis-based lock manager.

    Redis commands used:
    ─────────────────────────────────────────────────────────────────
    - SET NX PX: atomic acquire (only when the key is absent, with expiry)
    - GET + DEL (Lua): atomic release after checking the owner token
    - GET + PEXPIRE (Lua): atomic renewal after checking the owner token
    ─────────────────────────────────────────────────────────────────

    A lock whose holder dies expires after ``lock_timeout_ms``.
    """

    RELEASE_LOCK_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    RENEW_LOCK_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("pexpire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        default_lock_timeout_ms: int = 10000,
        default_acquire_timeout_ms: int = 5000,
        retry_interval_ms: int = 50,
    ):
        super().__init__(default_lock_timeout_ms, default_acquire_timeout_ms)
        self.redis = redis_client
        self.retry_interval_ms = retry_interval_ms

        self._instance_id = str(uuid4())
        self._held_locks: Set[str] = set()
        self._release_script = None
        self._renew_script = None

    def _ensure_scripts(self) -> None:
        if self._release_script is None:
            self._release_script = self.redis.register_script(self.RELEASE_LOCK_SCRIPT)
        if self._renew_script is None:
            self._renew_script = self.redis.register_script(self.RENEW_LOCK_SCRIPT)

    def _make_owner_token(self) -> str:
        """Instance id + timestamp + random, hashed."""
        raw = f"{self._instance_id}:{time.time_ns()}:{uuid4().hex[:8]}"
        return hashlib.sha256(raw.encode()).hexdigest()[:32]

    async def acquire(
        self,
        scope: LockScope,
        resource_id: Optional[str] = None,
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> LockInfo:
        """
        Acquire a lock, retrying every ``retry_interval_ms``.

        Raises:
            LockAcquisitionError: If the lock is still held after the acquire timeout
        """
        self._ensure_scripts()

        lock_timeout = lock_timeout_ms or self.default_lock_timeout_ms
        acquire_timeout = acquire_timeout_ms or self.default_acquire_timeout_ms
        lock_key = make_lock_key(scope, resource_id)
        owner_token = self._make_owner_token()

        start_time = time.monotonic() * 1000

        while True:
            acquired = await self.redis.set(
                lock_key,
                owner_token,
                nx=True,
                px=lock_timeout,
            )

            if acquired:
                now = time.time()
                self._held_locks.add(lock_key)
                return LockInfo(
                    lock_key=lock_key,
                    owner_id=owner_token,
                    acquired_at=now,
                    expires_at=now + (lock_timeout / 1000),
                    scope=scope,
                )

            elapsed = (time.monotonic() * 1000) - start_time
            if elapsed >= acquire_timeout:
                logger.warning(
                    "lock_acquire_timeout", lock_key=lock_key, timeout_ms=acquire_timeout
                )
                raise LockAcquisitionError(lock_key, acquire_timeout)

            await asyncio.sleep(self.retry_interval_ms / 1000)

    async def release(self, lock_info: LockInfo) -> bool:
        """Release if still owned. False means it expired or was taken over."""
        self._ensure_scripts()

        result = await self._release_script(
            keys=[lock_info.lock_key],
            args=[lock_info.owner_id],
        )
        self._held_locks.discard(lock_info.lock_key)
        if result != 1:
            logger.warning("lock_release_not_held", lock_key=lock_info.lock_key)
        return result == 1

    async def renew(
        self,
        lock_info: LockInfo,
        additional_time_ms: Optional[int] = None,
    ) -> bool:
        """Extend the TTL of a lock this instance still holds."""
        self._ensure_scripts()

        ttl = additional_time_ms or self.default_lock_timeout_ms
        result = await self._renew_script(
            keys=[lock_info.lock_key],
            args=[lock_info.owner_id, ttl],
        )
        return result == 1

    async def is_locked(self, scope: LockScope, resource_id: Optional[str] = None) -> bool:
        return await self.redis.exists(make_lock_key(scope, resource_id)) == 1

    async def cleanup_all(self) -> int:
        """Delete every lock this instance still tracks. Called on shutdown."""
        released = 0
        for lock_key in list(self._held_locks):
            await self.redis.delete(lock_key)
            self._held_locks.discard(lock_key)
            released += 1
        return released
