"""
HMAC Guard Configuration
========================
Immutable configuration passed to every component at construction.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .exceptions import ConfigurationError


class GuardPolicy(str, Enum):
    """Behaviour of a guard when its backing store is unreachable."""
    FAIL_OPEN = "open"      # Permit the request, log the fault
    FAIL_CLOSED = "closed"  # Surface an infrastructure error


@dataclass(frozen=True)
class HeaderNames:
    """Names of the four signed request headers."""
    api_key: str = "X-Api-Key"
    signature: str = "X-Signature"
    timestamp: str = "X-Timestamp"
    nonce: str = "X-Nonce"


@dataclass(frozen=True)
class HmacConfig:
    """Configuration for the verification pipeline and its guards."""
    enabled: bool = True
    algorithm: str = "sha256"
    key_prefix: str = "hmac"
    app_environment: str = "local"

    # Freshness and replay
    timestamp_tolerance: int = 300     # Seconds either side of now
    nonce_ttl: int = 600               # Must cover 2x the tolerance
    min_nonce_length: int = 32
    max_body_size: int = 1048576       # 1MB

    # Key material
    secret_length: int = 48            # Bytes before base64url encoding
    client_id_length: int = 16         # Bytes before hex encoding

    # Credential cache
    credential_cache_ttl: int = 60
    negative_cache_ttl: int = 60
    cache_lock_timeout: float = 10.0
    last_used_debounce: int = 60

    enforce_environment: bool = True

    # Failed-attempt limiter (per client id)
    rate_limit_enabled: bool = True
    rate_limit_max_attempts: int = 60
    rate_limit_decay_minutes: int = 1

    # IP blocking (derived from the audit log)
    ip_blocking_enabled: bool = True
    ip_blocking_threshold: int = 10
    ip_blocking_window_minutes: int = 10

    # Backend fault handling
    cache_prefix: str = "hmac:"
    nonce_policy: GuardPolicy = GuardPolicy.FAIL_OPEN
    rate_limit_policy: GuardPolicy = GuardPolicy.FAIL_OPEN
    ip_blocking_policy: GuardPolicy = GuardPolicy.FAIL_OPEN
    backend_timeout: float = 2.0

    rotation_grace_days: int = 7
    log_retention_days: int = 30

    # Fernet key for secrets at rest and in the shared cache
    encryption_key: Optional[str] = field(default=None, repr=False)

    headers: HeaderNames = field(default_factory=HeaderNames)

    def __post_init__(self):
        if self.timestamp_tolerance <= 0:
            raise ConfigurationError("Timestamp tolerance must be positive")
        if self.max_body_size <= 0:
            raise ConfigurationError("Max body size must be positive")
        if self.min_nonce_length < 16:
            raise ConfigurationError("Min nonce length must be at least 16")
        if self.nonce_ttl < 2 * self.timestamp_tolerance:
            raise ConfigurationError(
                f"Nonce TTL ({self.nonce_ttl}s) must be at least twice the "
                f"timestamp tolerance ({self.timestamp_tolerance}s)"
            )
        if self.backend_timeout <= 0:
            raise ConfigurationError("Backend timeout must be positive")

    @property
    def is_production(self) -> bool:
        return self.app_environment == "production"

    @property
    def rate_limit_decay_seconds(self) -> int:
        return self.rate_limit_decay_minutes * 60

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "HmacConfig":
        """
        Build configuration from HMAC_* environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            Validated HmacConfig
        """
        env = os.environ if environ is None else environ

        strict = _bool(env, "HMAC_REDIS_STRICT", False)
        default_policy = GuardPolicy.FAIL_CLOSED if strict else GuardPolicy.FAIL_OPEN

        return cls(
            enabled=_bool(env, "HMAC_AUTH_ENABLED", True),
            algorithm=env.get("HMAC_ALGORITHM", "sha256"),
            key_prefix=env.get("HMAC_KEY_PREFIX", "hmac"),
            app_environment=env.get("APP_ENV", "local"),
            timestamp_tolerance=_int(env, "HMAC_TIMESTAMP_TOLERANCE", 300),
            nonce_ttl=_int(env, "HMAC_NONCE_TTL", 600),
            min_nonce_length=_int(env, "HMAC_MIN_NONCE_LENGTH", 32),
            max_body_size=_int(env, "HMAC_MAX_BODY_SIZE", 1048576),
            secret_length=_int(env, "HMAC_SECRET_LENGTH", 48),
            client_id_length=_int(env, "HMAC_CLIENT_ID_LENGTH", 16),
            credential_cache_ttl=_int(env, "HMAC_CREDENTIAL_CACHE_TTL", 60),
            negative_cache_ttl=_int(env, "HMAC_NEGATIVE_CACHE_TTL", 60),
            last_used_debounce=_int(env, "HMAC_LAST_USED_DEBOUNCE", 60),
            enforce_environment=_bool(env, "HMAC_ENFORCE_ENVIRONMENT", True),
            rate_limit_enabled=_bool(env, "HMAC_RATE_LIMIT_ENABLED", True),
            rate_limit_max_attempts=_int(env, "HMAC_RATE_LIMIT_ATTEMPTS", 60),
            rate_limit_decay_minutes=_int(env, "HMAC_RATE_LIMIT_DECAY", 1),
            ip_blocking_enabled=_bool(env, "HMAC_IP_BLOCKING_ENABLED", True),
            ip_blocking_threshold=_int(env, "HMAC_IP_FAILURE_THRESHOLD", 10),
            ip_blocking_window_minutes=_int(env, "HMAC_IP_FAILURE_WINDOW", 10),
            cache_prefix=env.get("HMAC_REDIS_PREFIX", "hmac:"),
            nonce_policy=_policy(env, "HMAC_NONCE_POLICY", default_policy),
            rate_limit_policy=_policy(env, "HMAC_RATE_LIMIT_POLICY", default_policy),
            ip_blocking_policy=_policy(env, "HMAC_IP_BLOCKING_POLICY", default_policy),
            backend_timeout=_float(env, "HMAC_BACKEND_TIMEOUT", 2.0),
            rotation_grace_days=_int(env, "HMAC_ROTATION_GRACE_DAYS", 7),
            log_retention_days=_int(env, "HMAC_LOG_RETENTION_DAYS", 30),
            encryption_key=env.get("HMAC_ENCRYPTION_KEY") or None,
            headers=HeaderNames(
                api_key=env.get("HMAC_HEADER_API_KEY", "X-Api-Key"),
                signature=env.get("HMAC_HEADER_SIGNATURE", "X-Signature"),
                timestamp=env.get("HMAC_HEADER_TIMESTAMP", "X-Timestamp"),
                nonce=env.get("HMAC_HEADER_NONCE", "X-Nonce"),
            ),
        )


def _bool(env, key: str, default: bool) -> bool:
    value = env.get(key)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _int(env, key: str, default: int) -> int:
    value = env.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")


def _float(env, key: str, default: float) -> float:
    value = env.get(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {value!r}")


def _policy(env, key: str, default: GuardPolicy) -> GuardPolicy:
    value = env.get(key)
    if not value:
        return default
    try:
        return GuardPolicy(value.strip().lower())
    except ValueError:
        raise ConfigurationError(f"{key} must be 'open' or 'closed', got {value!r}")
