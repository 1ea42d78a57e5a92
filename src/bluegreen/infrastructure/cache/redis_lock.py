"""Advisory deployment locks: Redis for shared use, in-memory for one process."""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable

import redis.asyncio
import structlog

from bluegreen.config import RedisSettings
from bluegreen.domain.ports.services import DistributedLock
from bluegreen.infrastructure.observability.metrics import DISTRIBUTED_LOCK_OPERATIONS


logger = structlog.get_logger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

_EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
else
    return 0
end
"""


def _count(operation: str, ok: bool) -> None:
    DISTRIBUTED_LOCK_OPERATIONS.labels(
        operation=operation, result="success" if ok else "failure"
    ).inc()


class RedisDistributedLock(DistributedLock):
    """Lease keyed by service target using SET NX EX.

    The random token written on acquire is kept per resource so that only
    the holder can release or extend; release is a Lua compare-and-delete.
    """

    def __init__(self, client: redis.Redis, key_prefix: str = "bluegreen:lock") -> None:
        self._client = client
        self._key_prefix = key_prefix
        self._tokens: dict[str, str] = {}

    def _key(self, resource_id: str) -> str:
        return f"{self._key_prefix}:{resource_id}"

    async def acquire(self, resource_id: str, ttl_seconds: int = 30) -> bool:
        token = str(uuid.uuid4())
        acquired = bool(
            await self._client.set(self._key(resource_id), token, nx=True, ex=ttl_seconds)
        )
        _count("acquire", acquired)
        if acquired:
            self._tokens[resource_id] = token
            logger.info("lock_acquired", resource_id=resource_id, ttl=ttl_seconds)
        else:
            logger.warning("lock_not_acquired", resource_id=resource_id)
        return acquired

    async def release(self, resource_id: str) -> bool:
        token = self._tokens.pop(resource_id, None)
        if token is None:
            return False
        released = bool(
            await self._client.eval(_RELEASE_SCRIPT, 1, self._key(resource_id), token)
        )
        _count("release", released)
        if released:
            logger.info("lock_released", resource_id=resource_id)
        else:
            logger.warning("lock_expired_before_release", resource_id=resource_id)
        return released

    async def extend(self, resource_id: str, ttl_seconds: int = 30) -> bool:
        token = self._tokens.get(resource_id)
        if token is None:
            return False
        extended = bool(
            await self._client.eval(
                _EXTEND_SCRIPT, 1, self._key(resource_id), token, str(ttl_seconds)
            )
        )
        _count("extend", extended)
        return extended

    async def is_locked(self, resource_id: str) -> bool:
        return bool(await self._client.exists(self._key(resource_id)))


class InMemoryDistributedLock(DistributedLock):
    """Process-local lock with expiry, for development and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expiry: dict[str, float] = {}

    def _live(self, resource_id: str) -> bool:
        expires_at = self._expiry.get(resource_id)
        if expires_at is None:
            return False
        if expires_at <= self._clock():
            del self._expiry[resource_id]
            return False
        return True

    async def acquire(self, resource_id: str, ttl_seconds: int = 30) -> bool:
        if self._live(resource_id):
            _count("acquire", False)
            return False
        self._expiry[resource_id] = self._clock() + ttl_seconds
        _count("acquire", True)
        return True

    async def release(self, resource_id: str) -> bool:
        released = self._expiry.pop(resource_id, None) is not None
        _count("release", released)
        return released

    async def extend(self, resource_id: str, ttl_seconds: int = 30) -> bool:
        if not self._live(resource_id):
            return False
        self._expiry[resource_id] = self._clock() + ttl_seconds
        return True

    async def is_locked(self, resource_id: str) -> bool:
        return self._live(resource_id)


def create_redis_client(settings: RedisSettings) -> redis.Redis:
    """Factory function to create a Redis client."""
    return redis.Redis.from_url(
        settings.url,
        decode_responses=False,
        socket_timeout=5.0,
        socket_connect_timeout=5.0,
        retry_on_timeout=True,
    )
