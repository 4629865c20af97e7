"""
Guard Tests
===========
Nonce guard, attempt limiter, IP guard and backend fault policies.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from hmacguard.audit import AuditEntry, InMemoryAuditLogRepository
from hmacguard.cache import InMemoryCacheStore
from hmacguard.config import GuardPolicy, HmacConfig
from hmacguard.exceptions import (
    AuditStoreUnavailableError,
    NonceStoreUnavailableError,
    RateLimiterUnavailableError,
)
from hmacguard.guards import AttemptLimiter, IpGuard, NonceGuard, run_guarded

NONCE = "a" * 32


class ExpireBeforeIncrementCache(InMemoryCacheStore):
    """Lets an existing key expire between add_if_absent and increment."""

    def __init__(self, clock, gap: float):
        super().__init__(clock=clock)
        self.clock = clock
        self.gap = gap

    async def add_if_absent(self, key, value, ttl=None):
        added = await super().add_if_absent(key, value, ttl=ttl)
        if not added:
            self.clock.advance(self.gap)
        return added


def broken_cache() -> AsyncMock:
    cache = AsyncMock(spec=InMemoryCacheStore)
    for name in ("has", "get", "put", "forget", "increment", "add_if_absent", "forget_prefix"):
        getattr(cache, name).side_effect = RedisConnectionError("connection refused")
    return cache


class TestRunGuarded:
    """Tests for the shared backend failure handler."""

    @pytest.mark.asyncio
    async def test_returns_result(self):
        """Should pass the operation result through."""
        async def op():
            return 42

        result = await run_guarded(op, default=0, policy=GuardPolicy.FAIL_CLOSED, timeout=1, context="t")

        assert result == 42

    @pytest.mark.asyncio
    async def test_fail_open_returns_default(self):
        """Should return the default on a backend error when failing open."""
        async def op():
            raise ConnectionError("down")

        result = await run_guarded(op, default="fallback", policy=GuardPolicy.FAIL_OPEN, timeout=1, context="t")

        assert result == "fallback"

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self):
        """Should treat a slow backend like an unreachable one."""
        async def op():
            await asyncio.sleep(1)

        with pytest.raises(NonceStoreUnavailableError) as exc_info:
            await run_guarded(
                op,
                default=None,
                policy=GuardPolicy.FAIL_CLOSED,
                timeout=0.01,
                context="slow",
                error_class=NonceStoreUnavailableError,
            )

        assert exc_info.value.operation == "slow"

    @pytest.mark.asyncio
    async def test_programming_errors_propagate(self):
        """Should not swallow non-backend exceptions."""
        async def op():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await run_guarded(op, default=None, policy=GuardPolicy.FAIL_OPEN, timeout=1, context="t")


class TestNonceGuard:
    """Tests for replay protection."""

    @pytest.mark.asyncio
    async def test_consume_once(self, clock, config):
        """Should consume a nonce exactly once."""
        guard = NonceGuard(InMemoryCacheStore(clock=clock), config)

        assert await guard.exists(NONCE) is False
        assert await guard.consume(NONCE) is True
        assert await guard.exists(NONCE) is True
        assert await guard.consume(NONCE) is False

    @pytest.mark.asyncio
    async def test_nonce_expires_after_ttl(self, clock, config):
        """Should forget nonces after nonce_ttl."""
        guard = NonceGuard(InMemoryCacheStore(clock=clock), config)
        await guard.consume(NONCE)

        clock.advance(config.nonce_ttl)

        assert await guard.exists(NONCE) is False

    @pytest.mark.asyncio
    async def test_keys_are_hashed(self, clock, config):
        """Should never use the raw nonce as a storage key."""
        cache = InMemoryCacheStore(clock=clock)
        guard = NonceGuard(cache, config)
        await guard.consume("raw-nonce-value-0123456789abcdef")

        keys = list(cache._entries)
        assert len(keys) == 1
        assert keys[0].startswith("hmac:nonce:")
        assert "raw-nonce" not in keys[0]

    @pytest.mark.asyncio
    async def test_concurrent_consume_single_winner(self, clock, config):
        """Should let exactly one of many concurrent consumers win."""
        guard = NonceGuard(InMemoryCacheStore(clock=clock), config)

        results = await asyncio.gather(*(guard.consume(NONCE) for _ in range(20)))

        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_fail_open(self, config):
        """Should report unseen and consumed when the store is down and failing open."""
        guard = NonceGuard(broken_cache(), config)

        assert await guard.exists(NONCE) is False
        assert await guard.consume(NONCE) is True

    @pytest.mark.asyncio
    async def test_fail_closed(self):
        """Should raise when the store is down and failing closed."""
        config = HmacConfig(nonce_policy=GuardPolicy.FAIL_CLOSED)
        guard = NonceGuard(broken_cache(), config)

        with pytest.raises(NonceStoreUnavailableError):
            await guard.exists(NONCE)

    @pytest.mark.asyncio
    async def test_clear_refused_in_production(self, clock):
        """Should refuse to clear nonces in production."""
        guard = NonceGuard(InMemoryCacheStore(clock=clock), HmacConfig(app_environment="production"))

        with pytest.raises(RuntimeError):
            await guard.clear()

    @pytest.mark.asyncio
    async def test_clear(self, clock, config):
        """Should drop every nonce outside production."""
        guard = NonceGuard(InMemoryCacheStore(clock=clock), config)
        await guard.consume(NONCE)

        assert await guard.clear() == 1
        assert await guard.exists(NONCE) is False


class TestAttemptLimiter:
    """Tests for the failed-attempt counter."""

    @pytest.mark.asyncio
    async def test_limits_at_threshold(self, clock):
        """Should limit once failures reach the maximum."""
        config = HmacConfig(rate_limit_max_attempts=3)
        limiter = AttemptLimiter(InMemoryCacheStore(clock=clock), config)

        for _ in range(2):
            await limiter.record_failure("client")
        assert await limiter.is_limited("client") is False

        await limiter.record_failure("client")
        assert await limiter.is_limited("client") is True
        assert await limiter.attempts("client") == 3

    @pytest.mark.asyncio
    async def test_decays(self, clock):
        """Should forget failures after the decay window."""
        config = HmacConfig(rate_limit_max_attempts=1, rate_limit_decay_minutes=1)
        limiter = AttemptLimiter(InMemoryCacheStore(clock=clock), config)
        await limiter.record_failure("client")

        clock.advance(60)

        assert await limiter.is_limited("client") is False

    @pytest.mark.asyncio
    async def test_window_not_extended_by_failures(self, clock):
        """Should keep the TTL set by the first failure."""
        config = HmacConfig(rate_limit_max_attempts=2, rate_limit_decay_minutes=1)
        limiter = AttemptLimiter(InMemoryCacheStore(clock=clock), config)
        await limiter.record_failure("client")
        clock.advance(50)
        await limiter.record_failure("client")
        assert await limiter.is_limited("client") is True

        clock.advance(10)

        assert await limiter.attempts("client") == 0

    @pytest.mark.asyncio
    async def test_counter_recreated_by_increment_still_decays(self, clock):
        """Should re-apply the decay TTL when the counter expired mid-update."""
        config = HmacConfig(rate_limit_max_attempts=1, rate_limit_decay_minutes=1)
        limiter = AttemptLimiter(ExpireBeforeIncrementCache(clock, gap=61), config)
        await limiter.record_failure("client")

        await limiter.record_failure("client")
        assert await limiter.attempts("client") == 1

        clock.advance(60)

        assert await limiter.attempts("client") == 0
        assert await limiter.is_limited("client") is False

    @pytest.mark.asyncio
    async def test_reset(self, clock, config):
        """Should clear the counter."""
        limiter = AttemptLimiter(InMemoryCacheStore(clock=clock), config)
        await limiter.record_failure("client")

        await limiter.reset("client")

        assert await limiter.attempts("client") == 0

    @pytest.mark.asyncio
    async def test_key_normalizes_client_id(self, clock, config):
        """Should count padded and bare client ids together."""
        limiter = AttemptLimiter(InMemoryCacheStore(clock=clock), config)

        assert limiter.key_for("  client ") == limiter.key_for("client")

    @pytest.mark.asyncio
    async def test_disabled(self, clock):
        """Should neither count nor limit when disabled."""
        cache = InMemoryCacheStore(clock=clock)
        limiter = AttemptLimiter(cache, HmacConfig(rate_limit_enabled=False, rate_limit_max_attempts=1))

        await limiter.record_failure("client")

        assert await limiter.is_limited("client") is False
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_fail_open(self, config):
        """Should not limit when the store is down and failing open."""
        limiter = AttemptLimiter(broken_cache(), config)

        assert await limiter.is_limited("client") is False
        await limiter.record_failure("client")

    @pytest.mark.asyncio
    async def test_fail_closed(self):
        """Should raise when the store is down and failing closed."""
        limiter = AttemptLimiter(broken_cache(), HmacConfig(rate_limit_policy=GuardPolicy.FAIL_CLOSED))

        with pytest.raises(RateLimiterUnavailableError):
            await limiter.is_limited("client")


def failed_entry(ip: str, created_at: datetime) -> AuditEntry:
    return AuditEntry(
        client_id="client",
        request_method="POST",
        request_path="/api",
        ip_address=ip,
        success=False,
        created_at=created_at,
        failure_reason="Invalid signature",
    )


class TestIpGuard:
    """Tests for audit-derived IP blocking."""

    @pytest.mark.asyncio
    async def test_blocks_at_threshold(self, clock):
        """Should block an address once failures in the window reach the threshold."""
        config = HmacConfig(ip_blocking_threshold=3, ip_blocking_window_minutes=10)
        repository = InMemoryAuditLogRepository()
        guard = IpGuard(repository, config, clock=clock)
        now = datetime.fromtimestamp(clock(), tz=timezone.utc)

        for _ in range(2):
            await repository.create(failed_entry("198.51.100.1", now))
        assert await guard.has_excessive_failures("198.51.100.1") is False

        await repository.create(failed_entry("198.51.100.1", now))
        assert await guard.has_excessive_failures("198.51.100.1") is True
        assert await guard.has_excessive_failures("198.51.100.2") is False

    @pytest.mark.asyncio
    async def test_old_failures_age_out(self, clock):
        """Should ignore failures older than the window."""
        config = HmacConfig(ip_blocking_threshold=1, ip_blocking_window_minutes=10)
        repository = InMemoryAuditLogRepository()
        guard = IpGuard(repository, config, clock=clock)
        now = datetime.fromtimestamp(clock(), tz=timezone.utc)
        await repository.create(failed_entry("198.51.100.1", now - timedelta(minutes=11)))

        assert await guard.has_excessive_failures("198.51.100.1") is False

    @pytest.mark.asyncio
    async def test_clear_and_blocked_ips(self, clock):
        """Should list blocked addresses and unblock on clear."""
        config = HmacConfig(ip_blocking_threshold=2)
        repository = InMemoryAuditLogRepository()
        guard = IpGuard(repository, config, clock=clock)
        now = datetime.fromtimestamp(clock(), tz=timezone.utc)
        for _ in range(2):
            await repository.create(failed_entry("198.51.100.1", now))

        blocked = await guard.blocked_ips()
        assert [b.ip_address for b in blocked] == ["198.51.100.1"]
        assert blocked[0].failure_count == 2

        assert await guard.clear("198.51.100.1") == 2
        assert await guard.has_excessive_failures("198.51.100.1") is False

    @pytest.mark.asyncio
    async def test_disabled_or_missing_ip(self, clock):
        """Should never block when disabled or without an address."""
        repository = InMemoryAuditLogRepository()
        guard = IpGuard(repository, HmacConfig(ip_blocking_enabled=False, ip_blocking_threshold=1), clock=clock)
        await repository.create(failed_entry("198.51.100.1", datetime.fromtimestamp(clock(), tz=timezone.utc)))

        assert await guard.has_excessive_failures("198.51.100.1") is False
        assert await IpGuard(repository, HmacConfig(), clock=clock).has_excessive_failures(None) is False

    @pytest.mark.asyncio
    async def test_backend_policies(self, clock):
        """Should honor the IP blocking policy on audit store failure."""
        repository = AsyncMock(spec=InMemoryAuditLogRepository)
        repository.count_failed_by_ip.side_effect = OSError("db down")

        open_guard = IpGuard(repository, HmacConfig(), clock=clock)
        assert await open_guard.has_excessive_failures("198.51.100.1") is False

        closed_guard = IpGuard(repository, HmacConfig(ip_blocking_policy=GuardPolicy.FAIL_CLOSED), clock=clock)
        with pytest.raises(AuditStoreUnavailableError):
            await closed_guard.has_excessive_failures("198.51.100.1")
