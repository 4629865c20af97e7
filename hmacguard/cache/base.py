"""
Cache Store Interface
=====================
Key-value capability shared by the nonce guard, the attempt limiter and
the credential resolver.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class CacheStore(ABC):
    """
    Async key-value store with per-key TTL.

    Implementations must make increment and add_if_absent atomic on the
    backend (no client-side read-modify-write). Values must be
    JSON-serializable.
    """

    @abstractmethod
    async def has(self, key: str) -> bool:
        """True if a live entry exists under key."""

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        """Value stored under key, or default."""

    @abstractmethod
    async def put(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store value, expiring after ttl seconds (None keeps it forever)."""

    @abstractmethod
    async def forget(self, key: str) -> bool:
        """Delete key. Returns True if something was removed."""

    @abstractmethod
    async def increment(self, key: str, amount: int = 1) -> int:
        """Atomically add amount to an integer entry and return the new value."""

    @abstractmethod
    async def add_if_absent(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Atomically store value only if key is absent. True if stored."""

    @abstractmethod
    async def forget_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix. Returns the count removed."""
