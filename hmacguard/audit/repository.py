"""
Audit Log Repository
====================
Storage interface for audit entries plus an in-memory implementation.
"""

from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timedelta
from typing import List, Optional

from ..utils import as_aware, utcnow
from .models import AuditEntry, AuditStats, BlockedIp


class AuditLogRepository(ABC):
    """
    Audit log store.

    Window arguments are in minutes and measured back from now, which
    defaults to the current UTC time.
    """

    @abstractmethod
    async def create(self, entry: AuditEntry) -> AuditEntry:
        ...

    @abstractmethod
    async def count_failed_by_ip(
        self, ip_address: str, minutes: int = 10, now: Optional[datetime] = None
    ) -> int:
        ...

    @abstractmethod
    async def count_failed_by_client(
        self, client_id: str, minutes: int = 10, now: Optional[datetime] = None
    ) -> int:
        ...

    @abstractmethod
    async def get_by_client(self, client_id: str, limit: int = 100) -> List[AuditEntry]:
        """Most recent entries for a client id, newest first."""

    @abstractmethod
    async def delete_older_than(
        self, days: int, chunk_size: int = 1000, now: Optional[datetime] = None
    ) -> int:
        """Delete entries older than days, chunk_size rows at a time."""

    @abstractmethod
    async def delete_failed_by_ip(
        self, ip_address: str, minutes: int = 10, now: Optional[datetime] = None
    ) -> int:
        """Delete an address's recent failures (unblocks it)."""

    @abstractmethod
    async def get_blocked_ips(
        self, threshold: int = 10, minutes: int = 10, now: Optional[datetime] = None
    ) -> List[BlockedIp]:
        """Addresses with at least threshold recent failures, worst first."""

    @abstractmethod
    async def get_stats(
        self, days: int = 7, tenant_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> AuditStats:
        ...


class InMemoryAuditLogRepository(AuditLogRepository):
    """List-backed repository for tests and development."""

    def __init__(self):
        self.entries: List[AuditEntry] = []
        self._next_id = 1

    def _failed_since(self, minutes: int, now: Optional[datetime]) -> List[AuditEntry]:
        since = (now or utcnow()) - timedelta(minutes=minutes)
        return [e for e in self.entries if not e.success and as_aware(e.created_at) >= since]

    async def create(self, entry: AuditEntry) -> AuditEntry:
        entry.id = self._next_id
        self._next_id += 1
        self.entries.append(entry)
        return entry

    async def count_failed_by_ip(
        self, ip_address: str, minutes: int = 10, now: Optional[datetime] = None
    ) -> int:
        return sum(1 for e in self._failed_since(minutes, now) if e.ip_address == ip_address)

    async def count_failed_by_client(
        self, client_id: str, minutes: int = 10, now: Optional[datetime] = None
    ) -> int:
        return sum(1 for e in self._failed_since(minutes, now) if e.client_id == client_id)

    async def get_by_client(self, client_id: str, limit: int = 100) -> List[AuditEntry]:
        matching = [e for e in reversed(self.entries) if e.client_id == client_id]
        return matching[:limit]

    async def delete_older_than(
        self, days: int, chunk_size: int = 1000, now: Optional[datetime] = None
    ) -> int:
        cutoff = (now or utcnow()) - timedelta(days=days)
        kept = [e for e in self.entries if as_aware(e.created_at) >= cutoff]
        deleted = len(self.entries) - len(kept)
        self.entries = kept
        return deleted

    async def delete_failed_by_ip(
        self, ip_address: str, minutes: int = 10, now: Optional[datetime] = None
    ) -> int:
        doomed = {id(e) for e in self._failed_since(minutes, now) if e.ip_address == ip_address}
        self.entries = [e for e in self.entries if id(e) not in doomed]
        return len(doomed)

    async def get_blocked_ips(
        self, threshold: int = 10, minutes: int = 10, now: Optional[datetime] = None
    ) -> List[BlockedIp]:
        counts = Counter(e.ip_address for e in self._failed_since(minutes, now))
        return [
            BlockedIp(ip_address=ip, failure_count=count)
            for ip, count in counts.most_common()
            if count >= threshold
        ]

    async def get_stats(
        self, days: int = 7, tenant_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> AuditStats:
        since = (now or utcnow()) - timedelta(days=days)
        window = [
            e for e in self.entries
            if as_aware(e.created_at) >= since and (tenant_id is None or e.tenant_id == tenant_id)
        ]
        successful = sum(1 for e in window if e.success)
        return AuditStats(total=len(window), successful=successful, failed=len(window) - successful)
