"""
Redis Cache Store
=================
Redis-backed CacheStore using native atomic commands.
"""

import json
from typing import Any, Optional

import structlog
from redis.asyncio import Redis

from .base import CacheStore

logger = structlog.get_logger(__name__)


class RedisCacheStore(CacheStore):
    """
    CacheStore over an async Redis client.

    add_if_absent maps to SET NX EX and increment to INCRBY, so concurrent
    verifiers across processes never lose updates. Backend errors are left
    to propagate; the guards decide whether to fail open or closed.
    """

    def __init__(self, redis_client: Redis, prefix: str = ""):
        """
        Args:
            redis_client: Async Redis client
            prefix: Namespace prepended to every key
        """
        self.redis = redis_client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "", **kwargs) -> "RedisCacheStore":
        return cls(Redis.from_url(url, decode_responses=True, **kwargs), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    @staticmethod
    def _dump(value: Any) -> str:
        return json.dumps(value, separators=(",", ":"))

    @staticmethod
    def _load(raw: Any) -> Any:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    async def has(self, key: str) -> bool:
        return await self.redis.exists(self._key(key)) > 0

    async def get(self, key: str, default: Any = None) -> Any:
        raw = await self.redis.get(self._key(key))
        if raw is None:
            return default
        try:
            return self._load(raw)
        except ValueError:
            logger.warning("cache_value_undecodable", key=key[:64])
            return default

    async def put(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        await self.redis.set(self._key(key), self._dump(value), ex=ttl)

    async def forget(self, key: str) -> bool:
        return await self.redis.delete(self._key(key)) > 0

    async def increment(self, key: str, amount: int = 1) -> int:
        return int(await self.redis.incrby(self._key(key), amount))

    async def add_if_absent(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        stored = await self.redis.set(self._key(key), self._dump(value), ex=ttl, nx=True)
        return bool(stored)

    async def forget_prefix(self, prefix: str) -> int:
        removed = 0
        async for full_key in self.redis.scan_iter(match=f"{self._key(prefix)}*"):
            removed += await self.redis.delete(full_key)
        return removed

    async def close(self) -> None:
        await self.redis.aclose()
