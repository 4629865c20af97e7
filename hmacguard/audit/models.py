"""
Audit Models
============
Data models for request authentication log entries.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional

UNKNOWN_CLIENT = "unknown"
UNKNOWN_IP = "0.0.0.0"


@dataclass
class AuditEntry:
    """One authentication outcome. Also the data source for IP blocking."""
    client_id: str
    request_method: str
    request_path: str
    ip_address: str
    success: bool
    created_at: datetime
    response_status: int = 401
    failure_reason: Optional[str] = None
    user_agent: Optional[str] = None
    credential_id: Optional[int] = None
    tenant_id: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        d = asdict(self)
        d["created_at"] = self.created_at.isoformat()
        return d


@dataclass
class BlockedIp:
    """An address at or above the failure threshold."""
    ip_address: str
    failure_count: int


@dataclass
class AuditStats:
    total: int
    successful: int
    failed: int

    @property
    def success_rate(self) -> float:
        """Percentage of successful requests, rounded to 2 places."""
        if self.total == 0:
            return 0.0
        return round(self.successful / self.total * 100, 2)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["success_rate"] = self.success_rate
        return d
