"""
In-Memory Cache Store
=====================
Single-process cache for development and testing.
"""

import time
from typing import Any, Callable, Dict, Optional, Tuple

from .base import CacheStore


class InMemoryCacheStore(CacheStore):
    """
    Dictionary-backed CacheStore.

    Every operation completes without awaiting, so each one is atomic
    with respect to other coroutines on the same event loop.
    Use RedisCacheStore when more than one process verifies requests.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[Tuple[Any, Optional[float]]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _expiry(self, ttl: Optional[int]) -> Optional[float]:
        return None if ttl is None else self._clock() + ttl

    async def has(self, key: str) -> bool:
        return self._live(key) is not None

    async def get(self, key: str, default: Any = None) -> Any:
        entry = self._live(key)
        return default if entry is None else entry[0]

    async def put(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self._entries[key] = (value, self._expiry(ttl))

    async def forget(self, key: str) -> bool:
        if self._live(key) is None:
            return False
        del self._entries[key]
        return True

    async def increment(self, key: str, amount: int = 1) -> int:
        entry = self._live(key)
        if entry is None:
            self._entries[key] = (amount, None)
            return amount
        value, expires_at = entry
        new_value = int(value) + amount
        self._entries[key] = (new_value, expires_at)
        return new_value

    async def add_if_absent(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if self._live(key) is not None:
            return False
        self._entries[key] = (value, self._expiry(ttl))
        return True

    async def forget_prefix(self, prefix: str) -> int:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def ttl(self, key: str) -> Optional[float]:
        """Seconds until key expires (None if absent or without expiry)."""
        entry = self._live(key)
        if entry is None or entry[1] is None:
            return None
        return entry[1] - self._clock()

    def __len__(self) -> int:
        return sum(1 for key in list(self._entries) if self._live(key) is not None)
