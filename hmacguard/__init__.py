"""
HMAC Guard
==========
HMAC request authentication with replay protection, failed-attempt
limiting and zero-downtime secret rotation.
"""

__version__ = "0.1.0"

# Configuration
from hmacguard.config import GuardPolicy, HeaderNames, HmacConfig

# Exceptions
from hmacguard.exceptions import (
    HmacGuardError,
    ConfigurationError,
    BackendUnavailableError,
    NonceStoreUnavailableError,
    RateLimiterUnavailableError,
    AuditStoreUnavailableError,
    CredentialStoreUnavailableError,
    CredentialError,
    InvalidEnvironmentError,
    CredentialNotFoundError,
)

# Signing
from hmacguard.signing import (
    HmacAlgorithm,
    SignaturePayload,
    SignatureEngine,
    canonicalize,
    create_signed_headers,
    generate_nonce,
)

# Cache
from hmacguard.cache import CacheStore, InMemoryCacheStore, RedisCacheStore

# Guards
from hmacguard.guards import NonceGuard, AttemptLimiter, IpGuard

# Credentials
from hmacguard.credentials import (
    Credential,
    Environment,
    CredentialRepository,
    InMemoryCredentialRepository,
    CredentialResolver,
    CredentialService,
    RotationManager,
    SecretCipher,
    SecureKeyGenerator,
)

# Audit
from hmacguard.audit import (
    AuditEntry,
    AuditLogRepository,
    InMemoryAuditLogRepository,
    RequestLogger,
)

# Verification
from hmacguard.verification import (
    RequestContext,
    VerificationPipeline,
    VerificationResult,
    Success,
    Failure,
    FailureReason,
)

# Wiring
from hmacguard.manager import HmacManager

__all__ = [
    # Configuration
    "GuardPolicy",
    "HeaderNames",
    "HmacConfig",
    # Exceptions
    "HmacGuardError",
    "ConfigurationError",
    "BackendUnavailableError",
    "NonceStoreUnavailableError",
    "RateLimiterUnavailableError",
    "AuditStoreUnavailableError",
    "CredentialStoreUnavailableError",
    "CredentialError",
    "InvalidEnvironmentError",
    "CredentialNotFoundError",
    # Signing
    "HmacAlgorithm",
    "SignaturePayload",
    "SignatureEngine",
    "canonicalize",
    "create_signed_headers",
    "generate_nonce",
    # Cache
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCacheStore",
    # Guards
    "NonceGuard",
    "AttemptLimiter",
    "IpGuard",
    # Credentials
    "Credential",
    "Environment",
    "CredentialRepository",
    "InMemoryCredentialRepository",
    "CredentialResolver",
    "CredentialService",
    "RotationManager",
    "SecretCipher",
    "SecureKeyGenerator",
    # Audit
    "AuditEntry",
    "AuditLogRepository",
    "InMemoryAuditLogRepository",
    "RequestLogger",
    # Verification
    "RequestContext",
    "VerificationPipeline",
    "VerificationResult",
    "Success",
    "Failure",
    "FailureReason",
    # Wiring
    "HmacManager",
]
