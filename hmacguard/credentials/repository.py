"""
Credential Repository
=====================
Storage interface for credentials plus an in-memory implementation.

Repositories accept and return plain-secret Credential objects; any
encryption happens inside the implementation.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from ..utils import utcnow
from .models import Credential

MAX_COLLECTION_LIMIT = 1000


class CredentialRepository(ABC):
    """Credential store consumed by the resolver and the management service."""

    @abstractmethod
    async def find_by_client_id(self, client_id: str) -> Optional[Credential]:
        """Credential with this client id regardless of status."""

    @abstractmethod
    async def find_active_by_client_id(
        self, client_id: str, now: Optional[datetime] = None
    ) -> Optional[Credential]:
        """Credential only if active and not expired at now."""

    @abstractmethod
    async def create(self, credential: Credential) -> Credential:
        """Persist a new credential and return it with id and timestamps set."""

    @abstractmethod
    async def update(self, credential: Credential) -> Credential:
        """Persist every field of an existing credential (matched by id)."""

    @abstractmethod
    async def delete(self, credential_id: int) -> bool:
        ...

    @abstractmethod
    async def set_active(self, client_id: str, active: bool) -> bool:
        """Set the active flag. Returns False if no such credential."""

    @abstractmethod
    async def mark_as_used(self, credential_id: int, used_at: datetime) -> None:
        ...

    @abstractmethod
    async def get_expired(
        self, now: Optional[datetime] = None, limit: int = MAX_COLLECTION_LIMIT
    ) -> List[Credential]:
        """Active credentials whose expiry has passed."""

    @abstractmethod
    async def get_expiring_soon(
        self, days: int = 7, now: Optional[datetime] = None, limit: int = MAX_COLLECTION_LIMIT
    ) -> List[Credential]:
        """Active credentials expiring within the next days, soonest first."""

    async def activate(self, client_id: str) -> bool:
        return await self.set_active(client_id, True)

    async def deactivate(self, client_id: str) -> bool:
        return await self.set_active(client_id, False)

    async def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """
        Deactivate every expired credential.

        Returns:
            Number of credentials deactivated
        """
        expired = await self.get_expired(now)
        count = 0
        for credential in expired:
            if await self.deactivate(credential.client_id):
                count += 1
        return count


class InMemoryCredentialRepository(CredentialRepository):
    """Dictionary-backed repository for tests and development."""

    def __init__(self):
        self._by_id: Dict[int, Credential] = {}
        self._next_id = 1

    def _find(self, client_id: str) -> Optional[Credential]:
        for credential in self._by_id.values():
            if credential.client_id == client_id:
                return credential
        return None

    async def find_by_client_id(self, client_id: str) -> Optional[Credential]:
        credential = self._find(client_id)
        return credential.with_changes() if credential else None

    async def find_active_by_client_id(
        self, client_id: str, now: Optional[datetime] = None
    ) -> Optional[Credential]:
        credential = self._find(client_id)
        if credential is None or not credential.is_usable(now):
            return None
        return credential.with_changes()

    async def create(self, credential: Credential) -> Credential:
        if self._find(credential.client_id) is not None:
            raise ValueError("client_id already exists")
        now = utcnow()
        stored = credential.with_changes(
            id=self._next_id,
            created_at=credential.created_at or now,
            updated_at=now,
        )
        self._by_id[stored.id] = stored
        self._next_id += 1
        return stored.with_changes()

    async def update(self, credential: Credential) -> Credential:
        if credential.id not in self._by_id:
            raise KeyError(credential.id)
        stored = credential.with_changes(updated_at=utcnow())
        self._by_id[stored.id] = stored
        return stored.with_changes()

    async def delete(self, credential_id: int) -> bool:
        return self._by_id.pop(credential_id, None) is not None

    async def set_active(self, client_id: str, active: bool) -> bool:
        credential = self._find(client_id)
        if credential is None:
            return False
        self._by_id[credential.id] = credential.with_changes(is_active=active, updated_at=utcnow())
        return True

    async def mark_as_used(self, credential_id: int, used_at: datetime) -> None:
        credential = self._by_id.get(credential_id)
        if credential is not None:
            self._by_id[credential_id] = credential.with_changes(last_used_at=used_at)

    async def get_expired(
        self, now: Optional[datetime] = None, limit: int = MAX_COLLECTION_LIMIT
    ) -> List[Credential]:
        now = now or utcnow()
        expired = [
            c for c in self._by_id.values()
            if c.is_active and c.expires_at is not None and c.expires_at < now
        ]
        return [c.with_changes() for c in expired[:limit]]

    async def get_expiring_soon(
        self, days: int = 7, now: Optional[datetime] = None, limit: int = MAX_COLLECTION_LIMIT
    ) -> List[Credential]:
        now = now or utcnow()
        horizon = now + timedelta(days=days)
        soon = sorted(
            (
                c for c in self._by_id.values()
                if c.is_active and c.expires_at is not None and now < c.expires_at <= horizon
            ),
            key=lambda c: c.expires_at,
        )
        return [c.with_changes() for c in soon[:limit]]

    def __len__(self) -> int:
        return len(self._by_id)
