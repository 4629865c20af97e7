"""
Cache Module
============
Pluggable key-value backends with per-key TTL.
"""

from .base import CacheStore
from .memory import InMemoryCacheStore
from .redis_store import RedisCacheStore

__all__ = [
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCacheStore",
]
