"""
Attempt Limiter
===============
Counts failed authentications per client id over a decay window.
"""

import structlog

from ..cache import CacheStore
from ..config import HmacConfig
from ..exceptions import RateLimiterUnavailableError
from ..utils import hash_identifier, normalize_identifier, sanitize_for_log
from .failures import run_guarded

logger = structlog.get_logger(__name__)


class AttemptLimiter:
    """
    Failed-attempt counter keyed by the normalized, hashed client id.

    The first failure initializes the counter with the decay TTL through
    add_if_absent; later failures increment it atomically. A counter
    recreated by increment gets the TTL re-applied. When rate limiting is
    disabled nothing is read or written.
    """

    def __init__(self, cache: CacheStore, config: HmacConfig):
        self.cache = cache
        self.config = config
        self.prefix = f"{config.cache_prefix}rate_limit:attempts:"

    def key_for(self, client_id: str) -> str:
        return self.prefix + hash_identifier(normalize_identifier(client_id))

    async def _run(self, operation, default, context: str, client_id: str):
        return await run_guarded(
            operation,
            default=default,
            policy=self.config.rate_limit_policy,
            timeout=self.config.backend_timeout,
            context=context,
            error_class=RateLimiterUnavailableError,
            log_data={"client_id": sanitize_for_log(client_id)},
        )

    async def attempts(self, client_id: str) -> int:
        """Failures currently recorded for the client id."""
        key = self.key_for(client_id)
        value = await self._run(lambda: self.cache.get(key, 0), 0, "AttemptLimiter.attempts", client_id)
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    async def is_limited(self, client_id: str) -> bool:
        """True once recorded failures reach the configured maximum."""
        if not self.config.rate_limit_enabled:
            return False
        return await self.attempts(client_id) >= self.config.rate_limit_max_attempts

    async def record_failure(self, client_id: str) -> None:
        if not self.config.rate_limit_enabled:
            return
        key = self.key_for(client_id)
        ttl = self.config.rate_limit_decay_seconds

        async def _record():
            if await self.cache.add_if_absent(key, 1, ttl=ttl):
                return None
            # The key can expire between the two calls; increment then
            # recreates it without a TTL
            if await self.cache.increment(key) == 1:
                await self.cache.put(key, 1, ttl=ttl)
            return None

        await self._run(_record, None, "AttemptLimiter.record_failure", client_id)

    async def reset(self, client_id: str) -> None:
        """Clear the counter after a successful authentication."""
        if not self.config.rate_limit_enabled:
            return
        key = self.key_for(client_id)
        await self._run(lambda: self.cache.forget(key), False, "AttemptLimiter.reset", client_id)
