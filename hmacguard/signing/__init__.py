"""
Request Signing Module
======================
Canonical request strings and HMAC signatures.
"""

from .algorithms import HmacAlgorithm
from .canonical import SignaturePayload, canonicalize, normalize_path
from .signature import SignatureEngine, sign, verify, supported_algorithms
from .headers import create_signed_headers, generate_nonce

__all__ = [
    # Algorithms
    "HmacAlgorithm",
    # Canonical form
    "SignaturePayload",
    "canonicalize",
    "normalize_path",
    # Signatures
    "SignatureEngine",
    "sign",
    "verify",
    "supported_algorithms",
    # Client helpers
    "create_signed_headers",
    "generate_nonce",
]
