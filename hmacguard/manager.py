"""
HMAC Manager
============
Wires every component from one HmacConfig and three collaborators: a
CacheStore, a CredentialRepository and an AuditLogRepository.

Usage:
    manager = HmacManager.in_memory(HmacConfig(app_environment="testing"))
    credential, secret = await manager.generate_credentials()
    result = await manager.verify(ctx)
"""

import time
from datetime import datetime
from typing import Callable, Optional, Tuple, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .audit import AuditLogRepository, InMemoryAuditLogRepository, RequestLogger
from .audit.sql import SqlAuditLogRepository
from .cache import CacheStore, InMemoryCacheStore
from .config import HmacConfig
from .credentials import (
    Credential,
    CredentialRepository,
    CredentialResolver,
    CredentialService,
    Environment,
    InMemoryCredentialRepository,
    RotationManager,
    SecretCipher,
    SecureKeyGenerator,
)
from .credentials.sql import SqlCredentialRepository
from .guards import AttemptLimiter, IpGuard, NonceGuard
from .signing import SignatureEngine, SignaturePayload
from .verification import RequestContext, VerificationPipeline, VerificationResult

logger = structlog.get_logger(__name__)


class HmacManager:
    """Single entry point for verification, signing and credential management."""

    def __init__(
        self,
        config: HmacConfig,
        cache: CacheStore,
        credential_repository: CredentialRepository,
        audit_repository: AuditLogRepository,
        cipher: Optional[SecretCipher] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.cache = cache
        self.cipher = cipher or SecretCipher.from_config(config)
        self.credential_repository = credential_repository
        self.audit_repository = audit_repository

        self.signature_engine = SignatureEngine(config.algorithm)
        self.key_generator = SecureKeyGenerator(config)

        self.nonce_guard = NonceGuard(cache, config)
        self.attempt_limiter = AttemptLimiter(cache, config)
        self.ip_guard = IpGuard(audit_repository, config, clock=clock)
        self.resolver = CredentialResolver(credential_repository, cache, config, cipher=self.cipher, clock=clock)
        self.request_logger = RequestLogger(audit_repository, config, clock=clock)

        self.rotation = RotationManager(
            credential_repository, self.resolver, config, key_generator=self.key_generator, clock=clock
        )
        self.credentials = CredentialService(
            credential_repository,
            self.resolver,
            config,
            rotation=self.rotation,
            key_generator=self.key_generator,
        )
        self.pipeline = VerificationPipeline(
            config,
            self.nonce_guard,
            self.attempt_limiter,
            self.ip_guard,
            self.resolver,
            self.request_logger,
            signature_engine=self.signature_engine,
            clock=clock,
        )

    @classmethod
    def in_memory(
        cls,
        config: Optional[HmacConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> "HmacManager":
        """Everything in process memory. Single process only, so a missing key is generated."""
        config = config or HmacConfig()
        return cls(
            config,
            InMemoryCacheStore(clock=clock),
            InMemoryCredentialRepository(),
            InMemoryAuditLogRepository(),
            cipher=SecretCipher(config.encryption_key or SecretCipher.generate_key()),
            clock=clock,
        )

    @classmethod
    def with_sql(
        cls,
        config: HmacConfig,
        cache: CacheStore,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], float] = time.time,
    ) -> "HmacManager":
        """
        SQL repositories and a shared cache, for multi-process deployments.

        The repository and the credential cache encrypt with the same
        configured key.

        Raises:
            ConfigurationError: If config.encryption_key is not set
        """
        cipher = SecretCipher.from_config(config)
        return cls(
            config,
            cache,
            SqlCredentialRepository(session_factory, cipher),
            SqlAuditLogRepository(session_factory),
            cipher=cipher,
            clock=clock,
        )

    # =========================================================================
    # Verification and signing
    # =========================================================================

    async def verify(self, request: RequestContext) -> VerificationResult:
        return await self.pipeline.verify(request)

    def generate_signature(self, payload: SignaturePayload, secret: str, algorithm: Optional[str] = None) -> str:
        return self.signature_engine.sign(payload, secret, algorithm)

    def verify_signature(self, expected: str, actual: str) -> bool:
        return self.signature_engine.verify(expected, actual)

    # =========================================================================
    # Credentials
    # =========================================================================

    async def generate_credentials(
        self,
        environment: Union[Environment, str] = Environment.TESTING,
        expires_at: Optional[datetime] = None,
        tenant_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Tuple[Credential, str]:
        return await self.credentials.generate(environment, expires_at, tenant_id, created_by)

    async def rotate_secret(self, credential: Credential, grace_days: Optional[int] = None) -> Tuple[str, datetime]:
        """Returns (new_secret, old_secret_expires_at)."""
        return await self.rotation.rotate(credential, grace_days)

    def generate_client_id(self, environment: Union[Environment, str] = Environment.TESTING) -> str:
        return self.key_generator.generate_client_id(environment)

    def generate_client_secret(self) -> str:
        return self.key_generator.generate_secret()

    def generate_nonce(self) -> str:
        return self.key_generator.generate_nonce()

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def cleanup_logs(self, days: Optional[int] = None, chunk_size: int = 1000) -> int:
        """Delete audit entries older than days (default: log_retention_days)."""
        days = self.config.log_retention_days if days is None else days
        deleted = await self.audit_repository.delete_older_than(days, chunk_size)
        logger.info("audit_logs_cleaned", days=days, deleted=deleted)
        return deleted

    async def unblock_ip(self, ip_address: str) -> int:
        return await self.ip_guard.clear(ip_address)
