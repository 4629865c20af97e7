"""
Canonical Request String
========================
Deterministic HMAC input built from method, path, body, timestamp and nonce.
"""

import re
from dataclasses import dataclass
from typing import Optional, Union

_REPEATED_SLASHES = re.compile(r"/+")


def normalize_path(path: str, query: Optional[str] = None) -> str:
    """
    Normalize a request path so equivalent spellings sign identically.

    Collapses repeated slashes, strips the trailing slash (except for the
    root path) and appends the query string when present.

    Args:
        path: Request path, optionally already carrying "?query"
        query: Query string without the leading "?"

    Returns:
        Normalized path, e.g. "/api/search?q=1"
    """
    if query is None and "?" in path:
        path, query = path.split("?", 1)

    collapsed = _REPEATED_SLASHES.sub("/", path)
    trimmed = collapsed.strip("/")
    normalized = "/" + trimmed if trimmed else "/"

    if query:
        normalized = f"{normalized}?{query}"
    return normalized


def _body_text(body: Union[bytes, str, None]) -> str:
    if body is None:
        return ""
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="surrogateescape")
    return body


@dataclass(frozen=True)
class SignaturePayload:
    """
    The five signed fields of a request.

    The body is kept exactly as transmitted. Never re-serialize it.
    """
    method: str
    path: str
    body: bytes
    timestamp: str
    nonce: str

    def __post_init__(self):
        if not self.method or not self.path or not self.timestamp or not self.nonce:
            raise ValueError("Payload fields cannot be empty")

    @classmethod
    def build(
        cls,
        method: str,
        path: str,
        body: Union[bytes, str, None],
        timestamp: Union[int, str],
        nonce: str,
        query: Optional[str] = None,
    ) -> "SignaturePayload":
        """
        Build a payload from raw request values.

        Upper-cases the method and normalizes the path.
        """
        if isinstance(body, str):
            body = body.encode("utf-8")
        return cls(
            method=method.upper(),
            path=normalize_path(path, query),
            body=body or b"",
            timestamp=str(timestamp),
            nonce=nonce,
        )

    @property
    def body_size(self) -> int:
        return len(self.body)

    def to_canonical_bytes(self) -> bytes:
        """Join the fields with newlines, in fixed order, unescaped."""
        return b"\n".join([
            self.method.encode("utf-8"),
            self.path.encode("utf-8"),
            self.body,
            self.timestamp.encode("utf-8"),
            self.nonce.encode("utf-8"),
        ])

    def to_canonical_string(self) -> str:
        return "\n".join([
            self.method,
            self.path,
            _body_text(self.body),
            self.timestamp,
            self.nonce,
        ])


def canonicalize(
    method: str,
    path: str,
    body: Union[bytes, str, None],
    timestamp: Union[int, str],
    nonce: str,
    query: Optional[str] = None,
) -> bytes:
    """Canonical bytes for the given request values."""
    return SignaturePayload.build(method, path, body, timestamp, nonce, query).to_canonical_bytes()
