"""
Credential Models
=================
Data models for registered API clients. Secrets never appear in repr or
serialized output.
"""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ..signing import HmacAlgorithm
from ..utils import as_aware, utcnow


class Environment(str, Enum):
    """Where a credential may authenticate."""
    PRODUCTION = "production"
    TESTING = "testing"

    @classmethod
    def values(cls) -> tuple:
        return tuple(e.value for e in cls)

    @property
    def key_mode(self) -> str:
        """Client id infix: live for production keys, test otherwise."""
        return "live" if self is Environment.PRODUCTION else "test"

    def matches(self, app_environment: str) -> bool:
        """
        A production credential matches only a production app; a testing
        credential matches every other app environment.
        """
        if app_environment == Environment.PRODUCTION.value:
            return self is Environment.PRODUCTION
        return self is Environment.TESTING


@dataclass
class Credential:
    """One registered API client."""
    client_id: str
    client_secret: str = field(repr=False)
    environment: Environment = Environment.TESTING
    algorithm: str = HmacAlgorithm.SHA256.value
    is_active: bool = True
    id: Optional[int] = None
    old_client_secret: Optional[str] = field(default=None, repr=False)
    old_secret_expires_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    tenant_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.environment, Environment):
            self.environment = Environment(self.environment)
        self.expires_at = as_aware(self.expires_at)
        self.old_secret_expires_at = as_aware(self.old_secret_expires_at)
        self.last_used_at = as_aware(self.last_used_at)
        if (self.old_client_secret is None) != (self.old_secret_expires_at is None):
            raise ValueError("old_client_secret and old_secret_expires_at must be set together")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        """Active and not expired."""
        return self.is_active and not self.is_expired(now)

    def matches_environment(self, app_environment: str) -> bool:
        return self.environment.matches(app_environment)

    def has_secret(self) -> bool:
        return bool(self.client_secret)

    def previous_secret_usable(self, now: Optional[datetime] = None) -> bool:
        """
        The rotated-out secret authenticates only until its deadline, even
        if the stored fields have not been cleared yet.
        """
        if not self.old_client_secret or self.old_secret_expires_at is None:
            return False
        return self.old_secret_expires_at > (now or utcnow())

    def with_changes(self, **changes) -> "Credential":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view without any secret material."""
        d = asdict(self)
        d.pop("client_secret")
        d.pop("old_client_secret")
        d["environment"] = self.environment.value
        for key in ("old_secret_expires_at", "expires_at", "last_used_at", "created_at", "updated_at"):
            if d[key] is not None:
                d[key] = d[key].isoformat()
        return d
