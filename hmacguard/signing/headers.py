"""
Header Functions
================
Client-side helpers for producing signed request headers.
"""

import secrets
import time
from typing import Dict, Optional, Union

from ..config import HeaderNames
from .algorithms import HmacAlgorithm
from .canonical import SignaturePayload
from .signature import sign


def generate_nonce() -> str:
    """Generate a 32 hex character nonce (128 bits)."""
    return secrets.token_hex(16)


def create_signed_headers(
    client_id: str,
    secret: str,
    method: str,
    path: str,
    body: Union[bytes, str, None] = b"",
    algorithm: Union[HmacAlgorithm, str] = HmacAlgorithm.SHA256,
    timestamp: Optional[int] = None,
    nonce: Optional[str] = None,
    header_names: Optional[HeaderNames] = None,
) -> Dict[str, str]:
    """
    Create headers for a signed outbound request.

    Args:
        client_id: Credential client id
        secret: Credential secret
        method: HTTP method
        path: Request path including any query string
        body: The exact bytes that will be transmitted
        algorithm: Digest algorithm registered for the credential
        timestamp: Unix seconds (defaults to now)
        nonce: Single-use token (defaults to a fresh random one)
        header_names: Header naming override

    Returns:
        Dictionary of headers to include in the request
    """
    names = header_names or HeaderNames()
    timestamp = int(time.time()) if timestamp is None else timestamp
    nonce = nonce or generate_nonce()

    payload = SignaturePayload.build(method, path, body, timestamp, nonce)
    signature = sign(payload.to_canonical_bytes(), secret, algorithm)

    return {
        names.api_key: client_id,
        names.signature: signature,
        names.timestamp: str(timestamp),
        names.nonce: nonce,
    }
