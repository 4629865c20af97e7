"""
HMAC Guard Exceptions
=====================
Infrastructure and misuse errors.

Authentication failures are never raised; the pipeline returns them as
a Failure result. These exceptions cover everything else.
"""

from typing import Optional


class HmacGuardError(Exception):
    """Base exception for the package."""
    pass


class ConfigurationError(HmacGuardError):
    """Raised when a configuration value is invalid."""
    pass


class BackendUnavailableError(HmacGuardError):
    """
    Raised when a fail-closed guard cannot reach its backing store.

    Distinguishes "our Redis is down" from an authentication failure.
    """

    component = "backend"

    def __init__(self, message: Optional[str] = None, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message or f"{self.component} unavailable")


class NonceStoreUnavailableError(BackendUnavailableError):
    """Nonce store unreachable."""
    component = "nonce_store"


class RateLimiterUnavailableError(BackendUnavailableError):
    """Attempt counter store unreachable."""
    component = "rate_limiter"


class AuditStoreUnavailableError(BackendUnavailableError):
    """Audit log store unreachable."""
    component = "audit_store"


class CredentialStoreUnavailableError(BackendUnavailableError):
    """Credential store unreachable."""
    component = "credential_store"


class CredentialError(HmacGuardError):
    """Raised on invalid credential management operations."""
    pass


class InvalidEnvironmentError(CredentialError):
    """Raised when a credential environment is not in the supported set."""

    def __init__(self, environment: str, valid: tuple):
        self.environment = environment
        super().__init__(
            f"Invalid environment: {environment}. Valid values: {', '.join(valid)}"
        )


class CredentialNotFoundError(CredentialError):
    """Raised when a managed credential no longer exists."""

    def __init__(self, client_id: str):
        self.client_id = client_id
        super().__init__("Credential not found")
