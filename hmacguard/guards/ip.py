"""
IP Guard
========
Blocks source addresses with too many recent failures, counted from the
audit log rather than a counter of its own.
"""

import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

import structlog

from ..audit.models import BlockedIp
from ..audit.repository import AuditLogRepository
from ..config import HmacConfig
from ..exceptions import AuditStoreUnavailableError
from ..utils import truncate_ip
from .failures import run_guarded

logger = structlog.get_logger(__name__)


class IpGuard:
    """
    Failure threshold per source address over a trailing window.

    Failures age out of the window (and out of the log under retention)
    on their own; clear() removes them early.
    """

    def __init__(
        self,
        repository: AuditLogRepository,
        config: HmacConfig,
        clock: Callable[[], float] = time.time,
    ):
        self.repository = repository
        self.config = config
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    async def has_excessive_failures(self, ip_address: Optional[str]) -> bool:
        if not self.config.ip_blocking_enabled or not ip_address:
            return False
        ip_address = truncate_ip(ip_address)
        now = self._now()
        count = await run_guarded(
            lambda: self.repository.count_failed_by_ip(
                ip_address, self.config.ip_blocking_window_minutes, now
            ),
            default=0,
            policy=self.config.ip_blocking_policy,
            timeout=self.config.backend_timeout,
            context="IpGuard.has_excessive_failures",
            error_class=AuditStoreUnavailableError,
            log_data={"ip": ip_address},
        )
        return count >= self.config.ip_blocking_threshold

    async def clear(self, ip_address: str) -> int:
        """Forget an address's recent failures. Returns entries removed."""
        ip_address = truncate_ip(ip_address)
        removed = await self.repository.delete_failed_by_ip(
            ip_address, self.config.ip_blocking_window_minutes, self._now()
        )
        logger.info("ip_failures_cleared", ip=ip_address, removed=removed)
        return removed

    async def blocked_ips(self) -> List[BlockedIp]:
        return await self.repository.get_blocked_ips(
            self.config.ip_blocking_threshold,
            self.config.ip_blocking_window_minutes,
            self._now(),
        )
