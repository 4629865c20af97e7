"""
SQL Repository Tests
====================
Credential and audit repositories against SQLite through aiosqlite.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from structlog.testing import capture_logs

from hmacguard import HmacConfig, HmacManager, database
from hmacguard.audit import AuditEntry, InMemoryAuditLogRepository
from hmacguard.audit.sql import SqlAuditLogRepository
from hmacguard.cache import InMemoryCacheStore
from hmacguard.credentials import Credential, Environment, InMemoryCredentialRepository, SecretCipher
from hmacguard.credentials.sql import ApiCredentialModel, SqlCredentialRepository
from hmacguard.exceptions import ConfigurationError

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
async def session_factory(tmp_path):
    engine = database.create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hmacguard.db'}")
    await database.create_tables(engine)
    yield database.get_session_factory()
    await database.close_engine()


@pytest.fixture
def cipher():
    return SecretCipher(SecretCipher.generate_key())


@pytest.fixture
def credentials(session_factory, cipher):
    return SqlCredentialRepository(session_factory, cipher)


@pytest.fixture
def audit(session_factory):
    return SqlAuditLogRepository(session_factory)


def entry(success: bool, created_at: datetime, ip: str = "203.0.113.7", client_id: str = "hmac_test_a", **fields) -> AuditEntry:
    return AuditEntry(
        client_id=client_id,
        request_method="POST",
        request_path="/api/search",
        ip_address=ip,
        success=success,
        created_at=created_at,
        response_status=200 if success else 401,
        failure_reason=None if success else "invalid_signature",
        **fields,
    )


class TestSqlCredentialRepository:
    """Tests for the SQLAlchemy credential store."""

    @pytest.mark.asyncio
    async def test_create_and_find(self, credentials):
        """Should persist a credential and read it back with its secret."""
        created = await credentials.create(Credential(
            client_id="hmac_live_a",
            client_secret="s3cr3t",
            environment=Environment.PRODUCTION,
            algorithm="sha384",
            tenant_id="tenant-1",
        ))

        found = await credentials.find_by_client_id("hmac_live_a")

        assert created.id is not None
        assert found.client_secret == "s3cr3t"
        assert found.environment is Environment.PRODUCTION
        assert found.algorithm == "sha384"
        assert found.tenant_id == "tenant-1"
        assert await credentials.find_by_client_id("missing") is None

    @pytest.mark.asyncio
    async def test_secrets_encrypted_at_rest(self, credentials, session_factory):
        """Should store only ciphertext in the secret columns."""
        await credentials.create(Credential(client_id="hmac_test_a", client_secret="s3cr3t"))

        async with session_factory() as session:
            row = (await session.execute(select(ApiCredentialModel))).scalar_one()

        assert row.client_secret != "s3cr3t"
        assert "s3cr3t" not in row.client_secret

    @pytest.mark.asyncio
    async def test_find_active(self, credentials):
        """Should exclude inactive and expired credentials."""
        await credentials.create(Credential(client_id="active", client_secret="s"))
        await credentials.create(Credential(client_id="inactive", client_secret="s", is_active=False))
        await credentials.create(Credential(client_id="expired", client_secret="s", expires_at=NOW - timedelta(minutes=1)))
        await credentials.create(Credential(client_id="later", client_secret="s", expires_at=NOW + timedelta(minutes=1)))

        assert await credentials.find_active_by_client_id("active", NOW) is not None
        assert await credentials.find_active_by_client_id("inactive", NOW) is None
        assert await credentials.find_active_by_client_id("expired", NOW) is None
        assert await credentials.find_active_by_client_id("later", NOW) is not None

    @pytest.mark.asyncio
    async def test_update_rotation_fields(self, credentials):
        """Should persist the previous secret and its deadline."""
        created = await credentials.create(Credential(client_id="hmac_test_a", client_secret="old"))
        deadline = NOW + timedelta(days=7)

        await credentials.update(created.with_changes(
            client_secret="new", old_client_secret="old", old_secret_expires_at=deadline
        ))
        found = await credentials.find_by_client_id("hmac_test_a")

        assert found.client_secret == "new"
        assert found.old_client_secret == "old"
        assert found.old_secret_expires_at == deadline

    @pytest.mark.asyncio
    async def test_update_unknown(self, credentials):
        """Should refuse to update a missing credential."""
        with pytest.raises(KeyError):
            await credentials.update(Credential(client_id="x", client_secret="s", id=404))

    @pytest.mark.asyncio
    async def test_set_active_and_delete(self, credentials):
        """Should toggle status and delete by id."""
        created = await credentials.create(Credential(client_id="hmac_test_a", client_secret="s"))

        assert await credentials.deactivate("hmac_test_a") is True
        assert (await credentials.find_by_client_id("hmac_test_a")).is_active is False
        assert await credentials.activate("missing") is False

        assert await credentials.delete(created.id) is True
        assert await credentials.delete(created.id) is False

    @pytest.mark.asyncio
    async def test_mark_as_used(self, credentials):
        """Should store the last use time."""
        created = await credentials.create(Credential(client_id="hmac_test_a", client_secret="s"))

        await credentials.mark_as_used(created.id, NOW)

        assert (await credentials.find_by_client_id("hmac_test_a")).last_used_at == NOW

    @pytest.mark.asyncio
    async def test_expiry_queries_and_cleanup(self, credentials):
        """Should list expired and soon-expiring credentials and deactivate the expired."""
        await credentials.create(Credential(client_id="old", client_secret="s", expires_at=NOW - timedelta(days=1)))
        await credentials.create(Credential(client_id="later", client_secret="s", expires_at=NOW + timedelta(days=5)))
        await credentials.create(Credential(client_id="soon", client_secret="s", expires_at=NOW + timedelta(days=1)))
        await credentials.create(Credential(client_id="never", client_secret="s"))

        assert [c.client_id for c in await credentials.get_expired(NOW)] == ["old"]
        assert [c.client_id for c in await credentials.get_expiring_soon(7, NOW)] == ["soon", "later"]

        assert await credentials.cleanup_expired(NOW) == 1
        assert await credentials.get_expired(NOW) == []


class TestSqlAuditLogRepository:
    """Tests for the SQLAlchemy audit store."""

    @pytest.mark.asyncio
    async def test_create_and_read(self, audit):
        """Should persist entries and return them newest first."""
        await audit.create(entry(True, NOW - timedelta(minutes=2)))
        stored = await audit.create(entry(False, NOW - timedelta(minutes=1), user_agent="pytest"))

        entries = await audit.get_by_client("hmac_test_a")

        assert stored.id is not None
        assert [e.success for e in entries] == [False, True]
        assert entries[0].failure_reason == "invalid_signature"
        assert entries[0].user_agent == "pytest"

    @pytest.mark.asyncio
    async def test_failure_counts_in_window(self, audit):
        """Should count only recent failures."""
        await audit.create(entry(False, NOW - timedelta(minutes=1)))
        await audit.create(entry(False, NOW - timedelta(minutes=5), client_id="hmac_test_b"))
        await audit.create(entry(False, NOW - timedelta(minutes=30)))
        await audit.create(entry(True, NOW))

        assert await audit.count_failed_by_ip("203.0.113.7", 10, NOW) == 2
        assert await audit.count_failed_by_ip("198.51.100.1", 10, NOW) == 0
        assert await audit.count_failed_by_client("hmac_test_a", 10, NOW) == 1

    @pytest.mark.asyncio
    async def test_blocked_ips_and_unblock(self, audit):
        """Should report addresses over the threshold and clear them."""
        for _ in range(3):
            await audit.create(entry(False, NOW, ip="198.51.100.1"))
        await audit.create(entry(False, NOW, ip="198.51.100.2"))

        blocked = await audit.get_blocked_ips(threshold=2, minutes=10, now=NOW)

        assert [(b.ip_address, b.failure_count) for b in blocked] == [("198.51.100.1", 3)]
        assert await audit.delete_failed_by_ip("198.51.100.1", 10, NOW) == 3
        assert await audit.get_blocked_ips(threshold=2, minutes=10, now=NOW) == []

    @pytest.mark.asyncio
    async def test_delete_older_than_in_chunks(self, audit):
        """Should delete old entries across several chunks."""
        for _ in range(5):
            await audit.create(entry(False, NOW - timedelta(days=40)))
        await audit.create(entry(True, NOW))

        deleted = await audit.delete_older_than(30, chunk_size=2, now=NOW)

        assert deleted == 5
        assert len(await audit.get_by_client("hmac_test_a")) == 1

    @pytest.mark.asyncio
    async def test_stats(self, audit):
        """Should summarize outcomes per tenant."""
        await audit.create(entry(True, NOW, tenant_id="t1"))
        await audit.create(entry(True, NOW, tenant_id="t1"))
        await audit.create(entry(False, NOW, tenant_id="t1"))
        await audit.create(entry(False, NOW, tenant_id="t2"))

        overall = await audit.get_stats(7, now=NOW)
        tenant = await audit.get_stats(7, tenant_id="t1", now=NOW)

        assert (overall.total, overall.successful, overall.failed) == (4, 2, 2)
        assert tenant.success_rate == 66.67
        assert tenant.to_dict()["success_rate"] == 66.67


class TestSqlDeployment:
    """Tests for managers sharing one database and one cache."""

    @pytest.mark.asyncio
    async def test_managers_share_cached_credentials(self, session_factory, clock):
        """Should serve a credential cached by one manager to another with the same key."""
        config = HmacConfig(app_environment="testing", encryption_key=SecretCipher.generate_key())
        cache = InMemoryCacheStore(clock=clock)
        first = HmacManager.with_sql(config, cache, session_factory, clock=clock)
        second = HmacManager.with_sql(config, cache, session_factory, clock=clock)
        credential, secret = await first.generate_credentials()
        await first.resolver.find_active(credential.client_id)
        second.credential_repository.find_active_by_client_id = AsyncMock()

        with capture_logs() as logs:
            for _ in range(10):
                found = await second.resolver.find_active(credential.client_id)
                assert found.client_secret == secret

        second.credential_repository.find_active_by_client_id.assert_not_awaited()
        assert not [e for e in logs if e["event"] == "secret_decryption_failed"]

    @pytest.mark.asyncio
    async def test_repository_and_cache_use_configured_key(self, session_factory, clock):
        """Should encrypt stored secrets with the configured key."""
        key = SecretCipher.generate_key()
        manager = HmacManager.with_sql(
            HmacConfig(app_environment="testing", encryption_key=key), InMemoryCacheStore(clock=clock), session_factory
        )
        credential, secret = await manager.generate_credentials()

        async with session_factory() as session:
            row = (await session.execute(select(ApiCredentialModel))).scalar_one()

        assert SecretCipher(key).decrypt(row.client_secret) == secret
        assert manager.resolver.cipher is manager.credential_repository.cipher

    def test_requires_encryption_key(self, clock):
        """Should refuse to build a shared deployment without a configured key."""
        config = HmacConfig(app_environment="testing")

        with pytest.raises(ConfigurationError):
            HmacManager.with_sql(config, InMemoryCacheStore(clock=clock), session_factory=None)
        with pytest.raises(ConfigurationError):
            HmacManager(config, InMemoryCacheStore(clock=clock), InMemoryCredentialRepository(), InMemoryAuditLogRepository())

    def test_in_memory_generates_missing_key(self):
        """Should fall back to a generated key only for the in-memory setup."""
        manager = HmacManager.in_memory(HmacConfig(app_environment="testing"))

        assert manager.resolver.cipher is manager.cipher
