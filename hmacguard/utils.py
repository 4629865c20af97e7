"""
Shared Helpers
==============
Key hashing, base64url encoding, truncation and log sanitization.
"""

import base64
import binascii
import hashlib
import re
from datetime import datetime, timezone
from typing import Optional

_LOG_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")


def hash_identifier(identifier: str) -> str:
    """
    Hash an identifier for use inside a storage key.

    Bounds key length and prevents key injection regardless of what the
    client sent.

    Args:
        identifier: Raw client-supplied value

    Returns:
        SHA-256 hex digest
    """
    return hashlib.sha256(identifier.encode("utf-8")).hexdigest()


def normalize_identifier(identifier: str) -> str:
    """Normalize a client id so every code path keys on the same value."""
    return identifier.strip()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def base64url_encode(data: bytes) -> str:
    """URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(data: str) -> Optional[bytes]:
    """Decode URL-safe base64 with or without padding; None if malformed."""
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, ValueError):
        return None


def truncate(value: Optional[str], max_length: int, suffix: str = "...") -> Optional[str]:
    """
    Truncate a string to at most max_length characters.

    Args:
        value: String to truncate (None passes through)
        max_length: Maximum length including the suffix
        suffix: Marker appended when truncation happens

    Returns:
        Truncated string
    """
    if value is None or max_length <= 0:
        return value
    if len(value) <= max_length:
        return value
    keep = max(0, max_length - len(suffix))
    return value[:keep] + suffix


def truncate_path(path: str, max_length: int = 500) -> str:
    return truncate(path, max_length) or ""


def truncate_user_agent(user_agent: Optional[str], max_length: int = 500) -> Optional[str]:
    return truncate(user_agent, max_length)


def truncate_ip(ip_address: Optional[str], max_length: int = 45) -> Optional[str]:
    # 45 is the longest textual IPv6 address
    return truncate(ip_address, max_length)


def sanitize_for_log(value: str, max_length: int = 20) -> str:
    """Strip everything but [a-zA-Z0-9_-] to prevent log injection."""
    return _LOG_UNSAFE.sub("", value[:max_length]) + "..."


def mask_sensitive_value(value: str, visible_chars: int = 8) -> str:
    """
    Mask a sensitive value, showing only its first characters.

    Args:
        value: Value to mask
        visible_chars: Number of leading characters to keep

    Returns:
        Masked value (e.g., "a1b2c3d4...")
    """
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "..."
