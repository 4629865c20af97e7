"""
Verification Results
====================
Outcome of verifying one request: Success(credential) or Failure(reason).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

from ..credentials.models import Credential


class FailureReason(str, Enum):
    """Closed set of authentication failure reasons."""
    MISSING_HEADERS = "missing_headers"
    INVALID_TIMESTAMP = "invalid_timestamp"
    BODY_TOO_LARGE = "body_too_large"
    IP_BLOCKED = "ip_blocked"
    RATE_LIMITED = "rate_limited"
    INVALID_NONCE = "invalid_nonce"
    DUPLICATE_NONCE = "duplicate_nonce"
    INVALID_CLIENT_ID = "invalid_client_id"
    CREDENTIAL_EXPIRED = "credential_expired"
    ENVIRONMENT_MISMATCH = "environment_mismatch"
    INVALID_SECRET = "invalid_secret"
    INVALID_SIGNATURE = "invalid_signature"

    @property
    def message(self) -> str:
        return _MESSAGES[self]

    @property
    def http_status(self) -> int:
        if self in (FailureReason.RATE_LIMITED, FailureReason.IP_BLOCKED):
            return 429
        if self is FailureReason.BODY_TOO_LARGE:
            return 413
        return 401

    @property
    def increments_rate_limit(self) -> bool:
        """Only failures that look like an active attack count against the client."""
        return self in (
            FailureReason.INVALID_CLIENT_ID,
            FailureReason.ENVIRONMENT_MISMATCH,
            FailureReason.INVALID_SIGNATURE,
        )


_MESSAGES = {
    FailureReason.MISSING_HEADERS: "Missing required headers",
    FailureReason.INVALID_TIMESTAMP: "Invalid or expired timestamp",
    FailureReason.BODY_TOO_LARGE: "Request body exceeds maximum size",
    FailureReason.IP_BLOCKED: "Too many failed attempts from this IP",
    FailureReason.RATE_LIMITED: "Rate limit exceeded",
    FailureReason.INVALID_NONCE: "Nonce too short",
    FailureReason.DUPLICATE_NONCE: "Duplicate nonce detected",
    FailureReason.INVALID_CLIENT_ID: "Invalid client ID",
    FailureReason.CREDENTIAL_EXPIRED: "API credential has expired",
    FailureReason.ENVIRONMENT_MISMATCH: "Credential environment mismatch",
    FailureReason.INVALID_SECRET: "Invalid client secret",
    FailureReason.INVALID_SIGNATURE: "Invalid signature",
}


class VerificationResult:
    """
    Base of the two outcomes.

    Use isinstance(result, Success) or result.is_success; only Success
    carries a credential.
    """

    __slots__ = ()

    is_success: bool = False


@dataclass(frozen=True)
class Success(VerificationResult):
    credential: Credential

    is_success = True

    def to_dict(self) -> Dict[str, Any]:
        return {"success": True, "client_id": self.credential.client_id}


@dataclass(frozen=True)
class Failure(VerificationResult):
    reason: FailureReason

    @property
    def message(self) -> str:
        return self.reason.message

    @property
    def http_status(self) -> int:
        return self.reason.http_status

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "reason": self.reason.value, "message": self.reason.message}
