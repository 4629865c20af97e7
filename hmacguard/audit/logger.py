"""
Request Logger
==============
Writes one audit entry per verification outcome.
"""

import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

import structlog

from ..config import GuardPolicy, HmacConfig
from ..exceptions import AuditStoreUnavailableError
from ..guards.failures import run_guarded
from ..utils import normalize_identifier, sanitize_for_log, truncate_ip, truncate_path, truncate_user_agent
from .models import UNKNOWN_CLIENT, UNKNOWN_IP, AuditEntry
from .repository import AuditLogRepository

if TYPE_CHECKING:
    from ..credentials import Credential
    from ..verification.context import RequestContext

logger = structlog.get_logger(__name__)


class RequestLogger:
    """
    Audit trail for authentication attempts.

    Entries are mandatory: they feed IP blocking. A store fault raises
    AuditStoreUnavailableError whatever the guard policies are.
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

    def _entry(self, request: "RequestContext", **fields) -> AuditEntry:
        return AuditEntry(
            request_method=(request.method or "").upper()[:10],
            request_path=truncate_path(request.path or "/"),
            ip_address=truncate_ip(request.ip_address) or UNKNOWN_IP,
            user_agent=truncate_user_agent(request.user_agent),
            created_at=datetime.fromtimestamp(self._clock(), tz=timezone.utc),
            **fields,
        )

    async def _store(self, entry: AuditEntry) -> AuditEntry:
        return await run_guarded(
            lambda: self.repository.create(entry),
            default=entry,
            policy=GuardPolicy.FAIL_CLOSED,
            timeout=self.config.backend_timeout,
            context="RequestLogger.store",
            error_class=AuditStoreUnavailableError,
        )

    async def log_success(self, request: "RequestContext", credential: "Credential") -> AuditEntry:
        entry = self._entry(
            request,
            client_id=credential.client_id,
            credential_id=credential.id,
            tenant_id=credential.tenant_id,
            success=True,
            response_status=200,
        )
        stored = await self._store(entry)
        logger.debug(
            "hmac_authentication_succeeded",
            client_id=sanitize_for_log(credential.client_id),
            path=entry.request_path,
        )
        return stored

    async def log_failure(
        self,
        request: "RequestContext",
        reason: str,
        response_status: int = 401,
        credential: Optional["Credential"] = None,
        client_id: Optional[str] = None,
    ) -> AuditEntry:
        """
        Record a failed attempt and emit a warning.

        Args:
            request: The verified request
            reason: Failure reason value (e.g., "invalid_signature")
            response_status: Status the host will answer with
            credential: Resolved credential, if the failure came after lookup
            client_id: Normalized client id (defaults to the header value)
        """
        client_id = client_id or normalize_identifier(request.client_id or "") or UNKNOWN_CLIENT
        entry = self._entry(
            request,
            client_id=client_id[:255],
            credential_id=credential.id if credential else None,
            tenant_id=credential.tenant_id if credential else None,
            success=False,
            failure_reason=reason,
            response_status=response_status,
        )
        stored = await self._store(entry)
        logger.warning(
            "hmac_authentication_failed",
            client_id=sanitize_for_log(client_id),
            reason=reason,
            ip=entry.ip_address,
            path=entry.request_path,
        )
        return stored
