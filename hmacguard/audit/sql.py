"""
SQL Audit Log Repository
========================
SQLAlchemy-backed audit log store.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    case,
    delete,
    func,
    select,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from ..database import Base
from ..utils import utcnow
from .models import AuditEntry, AuditStats, BlockedIp
from .repository import AuditLogRepository


class ApiRequestLogModel(Base):
    """One stored authentication outcome."""

    __tablename__ = "api_request_logs"
    __table_args__ = (
        Index("ix_api_request_logs_client_created", "client_id", "created_at"),
        Index("ix_api_request_logs_valid_created", "signature_valid", "created_at"),
        Index("ix_api_request_logs_ip_valid_created", "ip_address", "signature_valid", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    api_credential_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("api_credentials.id", ondelete="SET NULL"), nullable=True
    )
    tenant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    client_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    request_method: Mapped[str] = mapped_column(String(10), nullable=False)
    request_path: Mapped[str] = mapped_column(String(500), nullable=False)
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    signature_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    response_status: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _to_entry(row: ApiRequestLogModel) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        credential_id=row.api_credential_id,
        tenant_id=row.tenant_id,
        client_id=row.client_id,
        request_method=row.request_method,
        request_path=row.request_path,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        success=row.signature_valid,
        failure_reason=row.failure_reason,
        response_status=row.response_status,
        created_at=row.created_at,
    )


class SqlAuditLogRepository(AuditLogRepository):
    """AuditLogRepository over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @staticmethod
    def _failed_since(minutes: int, now: Optional[datetime]):
        since = (now or utcnow()) - timedelta(minutes=minutes)
        return (
            ApiRequestLogModel.signature_valid.is_(False),
            ApiRequestLogModel.created_at >= since,
        )

    async def create(self, entry: AuditEntry) -> AuditEntry:
        row = ApiRequestLogModel(
            api_credential_id=entry.credential_id,
            tenant_id=entry.tenant_id,
            client_id=entry.client_id,
            request_method=entry.request_method,
            request_path=entry.request_path,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            signature_valid=entry.success,
            failure_reason=entry.failure_reason,
            response_status=entry.response_status,
            created_at=entry.created_at,
        )
        async with self.session_factory() as session:
            async with session.begin():
                session.add(row)
            entry.id = row.id
        return entry

    async def count_failed_by_ip(
        self, ip_address: str, minutes: int = 10, now: Optional[datetime] = None
    ) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(ApiRequestLogModel.id)).where(
                    ApiRequestLogModel.ip_address == ip_address,
                    *self._failed_since(minutes, now),
                )
            )
            return result.scalar_one()

    async def count_failed_by_client(
        self, client_id: str, minutes: int = 10, now: Optional[datetime] = None
    ) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(ApiRequestLogModel.id)).where(
                    ApiRequestLogModel.client_id == client_id,
                    *self._failed_since(minutes, now),
                )
            )
            return result.scalar_one()

    async def get_by_client(self, client_id: str, limit: int = 100) -> List[AuditEntry]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ApiRequestLogModel)
                .where(ApiRequestLogModel.client_id == client_id)
                .order_by(ApiRequestLogModel.created_at.desc(), ApiRequestLogModel.id.desc())
                .limit(limit)
            )
            return [_to_entry(row) for row in result.scalars()]

    async def delete_older_than(
        self, days: int, chunk_size: int = 1000, now: Optional[datetime] = None
    ) -> int:
        cutoff = (now or utcnow()) - timedelta(days=days)
        total_deleted = 0

        while True:
            async with self.session_factory() as session:
                async with session.begin():
                    ids = (await session.execute(
                        select(ApiRequestLogModel.id)
                        .where(ApiRequestLogModel.created_at < cutoff)
                        .order_by(ApiRequestLogModel.id)
                        .limit(chunk_size)
                    )).scalars().all()
                    if not ids:
                        break
                    result = await session.execute(
                        delete(ApiRequestLogModel).where(ApiRequestLogModel.id.in_(ids))
                    )
            total_deleted += result.rowcount
            if result.rowcount < chunk_size:
                break

        return total_deleted

    async def delete_failed_by_ip(
        self, ip_address: str, minutes: int = 10, now: Optional[datetime] = None
    ) -> int:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(ApiRequestLogModel).where(
                        ApiRequestLogModel.ip_address == ip_address,
                        *self._failed_since(minutes, now),
                    )
                )
            return result.rowcount

    async def get_blocked_ips(
        self, threshold: int = 10, minutes: int = 10, now: Optional[datetime] = None
    ) -> List[BlockedIp]:
        failure_count = func.count(ApiRequestLogModel.id).label("failure_count")
        async with self.session_factory() as session:
            result = await session.execute(
                select(ApiRequestLogModel.ip_address, failure_count)
                .where(*self._failed_since(minutes, now))
                .group_by(ApiRequestLogModel.ip_address)
                .having(func.count(ApiRequestLogModel.id) >= threshold)
                .order_by(failure_count.desc())
            )
            return [BlockedIp(ip_address=ip, failure_count=int(count)) for ip, count in result.all()]

    async def get_stats(
        self, days: int = 7, tenant_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> AuditStats:
        since = (now or utcnow()) - timedelta(days=days)
        query = select(
            func.count(ApiRequestLogModel.id),
            func.sum(case((ApiRequestLogModel.signature_valid.is_(True), 1), else_=0)),
        ).where(ApiRequestLogModel.created_at >= since)
        if tenant_id is not None:
            query = query.where(ApiRequestLogModel.tenant_id == tenant_id)

        async with self.session_factory() as session:
            total, successful = (await session.execute(query)).one()
        total = int(total or 0)
        successful = int(successful or 0)
        return AuditStats(total=total, successful=successful, failed=total - successful)
