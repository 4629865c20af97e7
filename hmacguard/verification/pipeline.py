"""
Verification Pipeline
=====================
Ordered request checks producing exactly one VerificationResult and
exactly one audit entry.

Order:
    1.  required headers present          -> MISSING_HEADERS
    2.  timestamp within tolerance         -> INVALID_TIMESTAMP
    3.  body size within limit             -> BODY_TOO_LARGE
    4.  source IP not blocked              -> IP_BLOCKED
    5.  client id not rate limited         -> RATE_LIMITED
    6.  nonce long enough                  -> INVALID_NONCE
    7.  nonce not yet consumed             -> DUPLICATE_NONCE
    8.  active credential found            -> INVALID_CLIENT_ID *
    9.  credential not expired             -> CREDENTIAL_EXPIRED
    10. environment matches (if enforced)  -> ENVIRONMENT_MISMATCH *
    11. credential has a secret            -> INVALID_SECRET
    12. signature matches current or
        unexpired previous secret          -> INVALID_SIGNATURE *
    13. consume nonce, mark used, audit, reset limiter -> Success

    * also records a failed attempt against the client id

Stateless checks run before any storage access, storage-backed guards
before credential lookup and HMAC computation.
"""

import re
import time
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from ..audit.logger import RequestLogger
from ..config import HmacConfig
from ..credentials.models import Credential
from ..credentials.resolver import CredentialResolver
from ..guards.attempts import AttemptLimiter
from ..guards.ip import IpGuard
from ..guards.nonce import NonceGuard
from ..signing import SignatureEngine, SignaturePayload
from ..utils import normalize_identifier, sanitize_for_log
from .context import RequestContext
from .result import Failure, FailureReason, Success, VerificationResult

logger = structlog.get_logger(__name__)

_UNIX_SECONDS = re.compile(r"[0-9]+")


def parse_timestamp(value: str) -> Optional[int]:
    """
    Unix seconds from a header value, None unless it is plain ASCII digits.

    The header text is signed as sent, so signs, underscores and padding
    that int() would tolerate are rejected.
    """
    if not isinstance(value, str) or not _UNIX_SECONDS.fullmatch(value):
        return None
    return int(value)


class VerificationPipeline:
    """
    Verifies signed requests.

    Expected authentication failures are returned as Failure, never
    raised. BackendUnavailableError propagates when a fail-closed guard,
    the credential store or the audit store is unreachable.

    Example:
        result = await pipeline.verify(ctx)
        if isinstance(result, Success):
            credential = result.credential
    """

    def __init__(
        self,
        config: HmacConfig,
        nonce_guard: NonceGuard,
        attempt_limiter: AttemptLimiter,
        ip_guard: IpGuard,
        resolver: CredentialResolver,
        request_logger: RequestLogger,
        signature_engine: Optional[SignatureEngine] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.nonce_guard = nonce_guard
        self.attempt_limiter = attempt_limiter
        self.ip_guard = ip_guard
        self.resolver = resolver
        self.request_logger = request_logger
        self.signature_engine = signature_engine or SignatureEngine(config.algorithm)
        self._clock = clock

    async def __call__(self, request: RequestContext) -> VerificationResult:
        return await self.verify(request)

    async def verify(self, request: RequestContext) -> VerificationResult:
        client_id = normalize_identifier(request.client_id or "")
        signature = request.signature
        timestamp = request.timestamp
        nonce = request.nonce

        if not (client_id and signature and timestamp and nonce):
            return await self._fail(request, client_id, FailureReason.MISSING_HEADERS)

        now = self._clock()
        sent_at = parse_timestamp(timestamp)
        if sent_at is None or abs(int(now) - sent_at) > self.config.timestamp_tolerance:
            return await self._fail(request, client_id, FailureReason.INVALID_TIMESTAMP)

        if request.body_size > self.config.max_body_size:
            return await self._fail(request, client_id, FailureReason.BODY_TOO_LARGE)

        if await self.ip_guard.has_excessive_failures(request.ip_address):
            return await self._fail(request, client_id, FailureReason.IP_BLOCKED)

        if await self.attempt_limiter.is_limited(client_id):
            return await self._fail(request, client_id, FailureReason.RATE_LIMITED)

        if len(nonce) < self.config.min_nonce_length:
            return await self._fail(request, client_id, FailureReason.INVALID_NONCE)

        if await self.nonce_guard.exists(nonce):
            return await self._fail(request, client_id, FailureReason.DUPLICATE_NONCE)

        credential = await self.resolver.find_active(client_id)
        if credential is None:
            return await self._fail(request, client_id, FailureReason.INVALID_CLIENT_ID)

        moment = datetime.fromtimestamp(now, tz=timezone.utc)
        if credential.is_expired(moment):
            return await self._fail(request, client_id, FailureReason.CREDENTIAL_EXPIRED, credential)

        if self.config.enforce_environment and not credential.matches_environment(self.config.app_environment):
            return await self._fail(request, client_id, FailureReason.ENVIRONMENT_MISMATCH, credential)

        if not credential.has_secret():
            return await self._fail(request, client_id, FailureReason.INVALID_SECRET, credential)

        if not self._signature_matches(request, credential, moment):
            return await self._fail(request, client_id, FailureReason.INVALID_SIGNATURE, credential)

        # Consumed last so a failed request never burns its nonce
        if not await self.nonce_guard.consume(nonce):
            return await self._fail(request, client_id, FailureReason.DUPLICATE_NONCE, credential)

        await self.resolver.mark_as_used(credential)
        await self.request_logger.log_success(request, credential)
        await self.attempt_limiter.reset(client_id)

        return Success(credential)

    def _signature_matches(self, request: RequestContext, credential: Credential, moment: datetime) -> bool:
        payload = SignaturePayload.build(
            request.method or "GET",
            request.path or "/",
            request.body,
            request.timestamp,
            request.nonce,
            query=request.query,
        )
        algorithm = self.signature_engine.resolve_algorithm(credential.algorithm)

        expected = self.signature_engine.sign(payload, credential.client_secret, algorithm)
        if self.signature_engine.verify(expected, request.signature):
            return True

        # Previous secret only until its deadline, whatever storage still holds
        if credential.previous_secret_usable(moment):
            expected = self.signature_engine.sign(payload, credential.old_client_secret, algorithm)
            if self.signature_engine.verify(expected, request.signature):
                logger.info(
                    "hmac_previous_secret_used",
                    client_id=sanitize_for_log(credential.client_id),
                    old_secret_expires_at=credential.old_secret_expires_at.isoformat(),
                )
                return True

        return False

    async def _fail(
        self,
        request: RequestContext,
        client_id: str,
        reason: FailureReason,
        credential: Optional[Credential] = None,
    ) -> Failure:
        if reason.increments_rate_limit:
            await self.attempt_limiter.record_failure(client_id)
        await self.request_logger.log_failure(
            request,
            reason.value,
            response_status=reason.http_status,
            credential=credential,
            client_id=client_id or None,
        )
        return Failure(reason)
