"""
Audit Module
============
Authentication audit trail. Failed entries double as the IP blocking
data source.
"""

from .logger import RequestLogger
from .models import AuditEntry, AuditStats, BlockedIp
from .repository import AuditLogRepository, InMemoryAuditLogRepository

__all__ = [
    "AuditEntry",
    "AuditStats",
    "BlockedIp",
    "AuditLogRepository",
    "InMemoryAuditLogRepository",
    "RequestLogger",
]
