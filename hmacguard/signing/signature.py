"""
Signature Functions
===================
HMAC signature computation and constant-time comparison.
"""

import hmac
from typing import FrozenSet, Optional, Union

import structlog

from ..utils import base64url_encode
from .algorithms import HmacAlgorithm
from .canonical import SignaturePayload

logger = structlog.get_logger(__name__)

AlgorithmLike = Union[HmacAlgorithm, str, None]


def _to_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign(
    canonical: Union[bytes, str],
    secret: Union[str, bytes],
    algorithm: AlgorithmLike = HmacAlgorithm.SHA256,
) -> str:
    """
    Compute an HMAC signature over a canonical string.

    Args:
        canonical: Canonical request bytes (see SignaturePayload)
        secret: Shared client secret
        algorithm: Digest algorithm; unrecognized names fall back to SHA-256

    Returns:
        URL-safe base64 digest without padding
    """
    resolved = HmacAlgorithm.resolve(algorithm)
    digest = hmac.new(_to_bytes(secret), _to_bytes(canonical), resolved.digestmod).digest()
    return base64url_encode(digest)


def verify(expected: str, actual: str) -> bool:
    """
    Compare two signatures in constant time.

    Args:
        expected: Signature computed by the server
        actual: Signature supplied by the client

    Returns:
        True if identical
    """
    return hmac.compare_digest(_to_bytes(expected), _to_bytes(actual))


def supported_algorithms() -> FrozenSet[str]:
    """Names of every supported algorithm."""
    return frozenset(HmacAlgorithm.supported_names())


class SignatureEngine:
    """
    Signs payloads with a configured fallback algorithm.

    Example:
        engine = SignatureEngine(default_algorithm="sha256")
        expected = engine.sign(payload, secret, credential.algorithm)
        if engine.verify(expected, provided):
            ...
    """

    def __init__(self, default_algorithm: AlgorithmLike = HmacAlgorithm.SHA256):
        self.default_algorithm = HmacAlgorithm.resolve(default_algorithm)

    def resolve_algorithm(self, algorithm: AlgorithmLike) -> HmacAlgorithm:
        """Map a requested algorithm onto the closed set or the default."""
        resolved = HmacAlgorithm.try_from(algorithm)
        if resolved is None:
            logger.warning(
                "hmac_algorithm_unrecognized",
                requested=str(algorithm)[:16],
                fallback=self.default_algorithm.value,
            )
            return self.default_algorithm
        return resolved

    def sign(
        self,
        payload: Union[SignaturePayload, bytes, str],
        secret: Union[str, bytes],
        algorithm: AlgorithmLike = None,
    ) -> str:
        if isinstance(payload, SignaturePayload):
            payload = payload.to_canonical_bytes()
        chosen = self.default_algorithm if algorithm is None else self.resolve_algorithm(algorithm)
        return sign(payload, secret, chosen)

    def verify(self, expected: str, actual: str) -> bool:
        return verify(expected, actual)

    def is_supported(self, algorithm: Optional[str]) -> bool:
        return HmacAlgorithm.try_from(algorithm) is not None

    def supported_algorithms(self) -> FrozenSet[str]:
        return supported_algorithms()
