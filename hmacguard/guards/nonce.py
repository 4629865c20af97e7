"""
Nonce Guard
===========
Replay protection backed by a shared CacheStore.
"""

import structlog

from ..cache import CacheStore
from ..config import HmacConfig
from ..exceptions import NonceStoreUnavailableError
from ..utils import hash_identifier, mask_sensitive_value
from .failures import run_guarded

logger = structlog.get_logger(__name__)


class NonceGuard:
    """
    Records consumed nonces for nonce_ttl seconds.

    Nonces are hashed before they become storage keys. A nonce is only
    consumed after a request passed every other check, so a failed
    request never burns it.
    """

    def __init__(self, cache: CacheStore, config: HmacConfig):
        self.cache = cache
        self.config = config
        self.prefix = f"{config.cache_prefix}nonce:"

    def _key(self, nonce: str) -> str:
        return self.prefix + hash_identifier(nonce)

    async def exists(self, nonce: str) -> bool:
        """True if the nonce was already consumed."""
        key = self._key(nonce)
        return await run_guarded(
            lambda: self.cache.has(key),
            default=False,
            policy=self.config.nonce_policy,
            timeout=self.config.backend_timeout,
            context="NonceGuard.exists",
            error_class=NonceStoreUnavailableError,
            log_data={"nonce_prefix": mask_sensitive_value(nonce)},
        )

    async def consume(self, nonce: str) -> bool:
        """
        Mark a nonce as used.

        Insertion is atomic (insert-if-absent), so of two concurrent
        requests carrying the same nonce exactly one gets True.

        Returns:
            True if this call consumed the nonce, False if it already was
        """
        key = self._key(nonce)
        consumed = await run_guarded(
            lambda: self.cache.add_if_absent(key, 1, ttl=self.config.nonce_ttl),
            default=True,
            policy=self.config.nonce_policy,
            timeout=self.config.backend_timeout,
            context="NonceGuard.consume",
            error_class=NonceStoreUnavailableError,
            log_data={"nonce_prefix": mask_sensitive_value(nonce)},
        )
        if not consumed:
            logger.warning("nonce_replay_race", nonce_prefix=mask_sensitive_value(nonce))
        return consumed

    async def clear(self) -> int:
        """
        Drop every recorded nonce. Test helper.

        Raises:
            RuntimeError: If called in production
        """
        if self.config.is_production:
            raise RuntimeError("NonceGuard.clear() cannot be called in production")
        return await self.cache.forget_prefix(self.prefix)
