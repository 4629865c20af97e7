"""
SQL Credential Repository
=========================
SQLAlchemy-backed credential store. Secrets are encrypted with
SecretCipher on the way in and decrypted on the way out.
"""

from datetime import datetime, timedelta
from typing import List, Optional

import structlog
from sqlalchemy import Boolean, DateTime, Integer, String, Text, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from ..database import Base
from ..utils import utcnow
from .cipher import SecretCipher
from .models import Credential, Environment
from .repository import MAX_COLLECTION_LIMIT, CredentialRepository

logger = structlog.get_logger(__name__)


class ApiCredentialModel(Base):
    """Stored API credential. Secret columns hold Fernet tokens."""

    __tablename__ = "api_credentials"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    client_secret: Mapped[str] = mapped_column(Text, nullable=False)
    old_client_secret: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    old_secret_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    algorithm: Mapped[str] = mapped_column(String(16), nullable=False, default="sha256")
    environment: Mapped[str] = mapped_column(String(16), nullable=False, default="testing")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SqlCredentialRepository(CredentialRepository):
    """
    CredentialRepository over an async SQLAlchemy session factory.

    Example:
        repo = SqlCredentialRepository(get_session_factory(), SecretCipher(key))
        credential = await repo.find_active_by_client_id("hmac_live_...")
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], cipher: SecretCipher):
        self.session_factory = session_factory
        self.cipher = cipher

    def _to_domain(self, row: ApiCredentialModel) -> Credential:
        old_secret = self.cipher.decrypt(row.old_client_secret)
        return Credential(
            id=row.id,
            client_id=row.client_id,
            client_secret=self.cipher.decrypt(row.client_secret) or "",
            old_client_secret=old_secret,
            old_secret_expires_at=row.old_secret_expires_at if old_secret else None,
            algorithm=row.algorithm,
            environment=Environment(row.environment),
            is_active=row.is_active,
            expires_at=row.expires_at,
            last_used_at=row.last_used_at,
            tenant_id=row.tenant_id,
            created_by=row.created_by,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _apply(self, row: ApiCredentialModel, credential: Credential) -> None:
        row.client_id = credential.client_id
        row.client_secret = self.cipher.encrypt(credential.client_secret)
        row.old_client_secret = self.cipher.encrypt(credential.old_client_secret)
        row.old_secret_expires_at = credential.old_secret_expires_at
        row.algorithm = credential.algorithm
        row.environment = credential.environment.value
        row.is_active = credential.is_active
        row.expires_at = credential.expires_at
        row.last_used_at = credential.last_used_at
        row.tenant_id = credential.tenant_id
        row.created_by = credential.created_by

    async def find_by_client_id(self, client_id: str) -> Optional[Credential]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ApiCredentialModel).where(ApiCredentialModel.client_id == client_id)
            )
            row = result.scalar_one_or_none()
            return self._to_domain(row) if row else None

    async def find_active_by_client_id(
        self, client_id: str, now: Optional[datetime] = None
    ) -> Optional[Credential]:
        now = now or utcnow()
        async with self.session_factory() as session:
            result = await session.execute(
                select(ApiCredentialModel).where(
                    ApiCredentialModel.client_id == client_id,
                    ApiCredentialModel.is_active.is_(True),
                    (ApiCredentialModel.expires_at.is_(None)) | (ApiCredentialModel.expires_at > now),
                )
            )
            row = result.scalar_one_or_none()
            return self._to_domain(row) if row else None

    async def create(self, credential: Credential) -> Credential:
        now = utcnow()
        row = ApiCredentialModel(created_at=credential.created_at or now, updated_at=now)
        self._apply(row, credential)
        async with self.session_factory() as session:
            async with session.begin():
                session.add(row)
            await session.refresh(row)
            logger.info("credential_created", credential_id=row.id, environment=row.environment)
            return self._to_domain(row)

    async def update(self, credential: Credential) -> Credential:
        async with self.session_factory() as session:
            async with session.begin():
                row = await session.get(ApiCredentialModel, credential.id)
                if row is None:
                    raise KeyError(credential.id)
                self._apply(row, credential)
                row.updated_at = utcnow()
            return self._to_domain(row)

    async def delete(self, credential_id: int) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(ApiCredentialModel).where(ApiCredentialModel.id == credential_id)
                )
            return result.rowcount > 0

    async def set_active(self, client_id: str, active: bool) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(ApiCredentialModel)
                    .where(ApiCredentialModel.client_id == client_id)
                    .values(is_active=active, updated_at=utcnow())
                )
            return result.rowcount > 0

    async def mark_as_used(self, credential_id: int, used_at: datetime) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(ApiCredentialModel)
                    .where(ApiCredentialModel.id == credential_id)
                    .values(last_used_at=used_at)
                )

    async def get_expired(
        self, now: Optional[datetime] = None, limit: int = MAX_COLLECTION_LIMIT
    ) -> List[Credential]:
        now = now or utcnow()
        async with self.session_factory() as session:
            result = await session.execute(
                select(ApiCredentialModel)
                .where(
                    ApiCredentialModel.is_active.is_(True),
                    ApiCredentialModel.expires_at.is_not(None),
                    ApiCredentialModel.expires_at < now,
                )
                .limit(limit)
            )
            return [self._to_domain(row) for row in result.scalars()]

    async def get_expiring_soon(
        self, days: int = 7, now: Optional[datetime] = None, limit: int = MAX_COLLECTION_LIMIT
    ) -> List[Credential]:
        now = now or utcnow()
        async with self.session_factory() as session:
            result = await session.execute(
                select(ApiCredentialModel)
                .where(
                    ApiCredentialModel.is_active.is_(True),
                    ApiCredentialModel.expires_at > now,
                    ApiCredentialModel.expires_at <= now + timedelta(days=days),
                )
                .order_by(ApiCredentialModel.expires_at)
                .limit(limit)
            )
            return [self._to_domain(row) for row in result.scalars()]

    async def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(ApiCredentialModel)
                    .where(
                        ApiCredentialModel.is_active.is_(True),
                        ApiCredentialModel.expires_at.is_not(None),
                        ApiCredentialModel.expires_at < now,
                    )
                    .values(is_active=False, updated_at=now)
                )
            return result.rowcount
