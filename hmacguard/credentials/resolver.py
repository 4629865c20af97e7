"""
Credential Resolver
===================
Cached credential lookup with negative caching and single-flight
stampede protection.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import structlog

from ..cache import CacheStore
from ..config import GuardPolicy, HmacConfig
from ..exceptions import CredentialStoreUnavailableError
from ..guards.failures import run_guarded
from ..utils import hash_identifier, sanitize_for_log
from .cipher import SecretCipher
from .models import Credential
from .repository import CredentialRepository

logger = structlog.get_logger(__name__)

NOT_FOUND_MARKER = "__not_found__"
_MISS = object()

_DATETIME_FIELDS = ("old_secret_expires_at", "expires_at", "last_used_at", "created_at", "updated_at")


class CredentialResolver:
    """
    Resolves a client id to its active credential.

    - Positive results are cached for credential_cache_ttl seconds with
      their secrets encrypted; raw secrets never reach the cache.
    - Unknown or inactive ids are cached as a short-lived "not found"
      marker to blunt probing.
    - At most one backing-store fetch per client id is in flight in this
      process; concurrent callers share its result. A caller that waits
      longer than cache_lock_timeout queries the store directly.
    - A cached credential can expire while cached. Expiry is re-checked
      at verification time, not here.
    - invalidate() detaches any in-flight fetch for the client id, and a
      fetch that started before an invalidation never writes the cache.

    Cache faults degrade to a store lookup. Store faults raise
    CredentialStoreUnavailableError.
    """

    def __init__(
        self,
        repository: CredentialRepository,
        cache: CacheStore,
        config: HmacConfig,
        cipher: Optional[SecretCipher] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.repository = repository
        self.cache = cache
        self.config = config
        self.cipher = cipher or SecretCipher.from_config(config)
        self._clock = clock
        self._inflight: Dict[str, asyncio.Future] = {}
        self._generations: Dict[str, int] = {}

    def now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _keys(self, client_id: str) -> Tuple[str, str]:
        hashed = hash_identifier(client_id)
        return (
            f"{self.config.cache_prefix}credential:active:{hashed}",
            f"{self.config.cache_prefix}credential:last_used:{hashed}",
        )

    # =========================================================================
    # Lookup
    # =========================================================================

    async def find_active(self, client_id: str) -> Optional[Credential]:
        """
        Active credential for client_id, or None.

        Raises:
            CredentialStoreUnavailableError: If the credential store fails
        """
        if not client_id:
            return None
        cache_key, _ = self._keys(client_id)

        cached = await self._read_cache(cache_key, client_id)
        if cached is not _MISS:
            return cached

        pending = self._inflight.get(cache_key)
        if pending is not None:
            try:
                return await asyncio.wait_for(
                    asyncio.shield(pending), timeout=self.config.cache_lock_timeout
                )
            except asyncio.TimeoutError:
                logger.warning("credential_lookup_lock_timeout", client_id=sanitize_for_log(client_id))
                return await self._fetch(client_id)

        future = asyncio.get_running_loop().create_future()
        self._inflight[cache_key] = future
        generation = self._generations.get(cache_key, 0)
        try:
            credential = await self._load(cache_key, client_id, generation)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so a future nobody waited on does not warn
            future.exception()
            raise
        else:
            future.set_result(credential)
            return credential
        finally:
            if self._inflight.get(cache_key) is future:
                del self._inflight[cache_key]

    async def _load(self, cache_key: str, client_id: str, generation: int) -> Optional[Credential]:
        # Another process may have filled the cache meanwhile
        cached = await self._read_cache(cache_key, client_id)
        if cached is not _MISS:
            return cached

        credential = await self._fetch(client_id)
        if self._generations.get(cache_key, 0) != generation:
            # Invalidated mid-fetch; the result may predate the write
            logger.debug("credential_cache_fill_skipped", client_id=sanitize_for_log(client_id))
        elif credential is not None:
            await self._write_cache(cache_key, self._serialize(credential), self.config.credential_cache_ttl)
        else:
            await self._write_cache(cache_key, NOT_FOUND_MARKER, self.config.negative_cache_ttl)
        return credential

    async def _fetch(self, client_id: str) -> Optional[Credential]:
        now = self.now()
        return await run_guarded(
            lambda: self.repository.find_active_by_client_id(client_id, now),
            default=None,
            policy=GuardPolicy.FAIL_CLOSED,
            timeout=self.config.backend_timeout,
            context="CredentialResolver.fetch",
            error_class=CredentialStoreUnavailableError,
            log_data={"client_id": sanitize_for_log(client_id)},
        )

    async def _read_cache(self, cache_key: str, client_id: str) -> Any:
        raw = await run_guarded(
            lambda: self.cache.get(cache_key, _MISS),
            default=_MISS,
            policy=GuardPolicy.FAIL_OPEN,
            timeout=self.config.backend_timeout,
            context="CredentialResolver.read_cache",
            log_data={"client_id": sanitize_for_log(client_id)},
        )
        if raw is _MISS or raw is None:
            return _MISS
        if raw == NOT_FOUND_MARKER:
            return None
        credential = self._deserialize(raw)
        return _MISS if credential is None else credential

    async def _write_cache(self, cache_key: str, value: Any, ttl: int) -> None:
        await run_guarded(
            lambda: self.cache.put(cache_key, value, ttl=ttl),
            default=None,
            policy=GuardPolicy.FAIL_OPEN,
            timeout=self.config.backend_timeout,
            context="CredentialResolver.write_cache",
        )

    # =========================================================================
    # Cached representation
    # =========================================================================

    def _serialize(self, credential: Credential) -> Dict[str, Any]:
        data = credential.to_dict()
        data["client_secret"] = self.cipher.encrypt(credential.client_secret)
        data["old_client_secret"] = self.cipher.encrypt(credential.old_client_secret)
        return data

    def _deserialize(self, data: Any) -> Optional[Credential]:
        if not isinstance(data, dict):
            return None
        try:
            fields = dict(data)
            secret = self.cipher.decrypt(fields.pop("client_secret"))
            old_secret = self.cipher.decrypt(fields.pop("old_client_secret"))
            if secret is None:
                return None
            for name in _DATETIME_FIELDS:
                if fields.get(name):
                    fields[name] = datetime.fromisoformat(fields[name])
            if old_secret is None:
                fields["old_secret_expires_at"] = None
            return Credential(client_secret=secret, old_client_secret=old_secret, **fields)
        except (KeyError, TypeError, ValueError):
            logger.warning("credential_cache_entry_invalid")
            return None

    # =========================================================================
    # Writes
    # =========================================================================

    async def invalidate(self, client_id: str) -> None:
        """
        Drop cached state for client_id before a write is reported done.

        Raises:
            CredentialStoreUnavailableError: If the cache cannot be cleared
        """
        cache_key, last_used_key = self._keys(client_id)
        self._generations[cache_key] = self._generations.get(cache_key, 0) + 1
        self._inflight.pop(cache_key, None)

        async def _forget():
            await self.cache.forget(cache_key)
            await self.cache.forget(last_used_key)

        await run_guarded(
            _forget,
            default=None,
            policy=GuardPolicy.FAIL_CLOSED,
            timeout=self.config.backend_timeout,
            context="CredentialResolver.invalidate",
            error_class=CredentialStoreUnavailableError,
            log_data={"client_id": sanitize_for_log(client_id)},
        )
        logger.debug("credential_cache_invalidated", client_id=sanitize_for_log(client_id))

    async def mark_as_used(self, credential: Credential) -> bool:
        """
        Record last use, at most once per last_used_debounce seconds.

        Advisory: failures are logged and ignored.

        Returns:
            True if a store write happened
        """
        if credential.id is None:
            return False
        _, last_used_key = self._keys(credential.client_id)
        now = self.now()

        async def _mark():
            if not await self.cache.add_if_absent(last_used_key, 1, ttl=self.config.last_used_debounce):
                return False
            await self.repository.mark_as_used(credential.id, now)
            return True

        return await run_guarded(
            _mark,
            default=False,
            policy=GuardPolicy.FAIL_OPEN,
            timeout=self.config.backend_timeout,
            context="CredentialResolver.mark_as_used",
            log_data={"client_id": sanitize_for_log(credential.client_id)},
        )
