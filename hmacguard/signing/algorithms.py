"""
HMAC Algorithms
===============
Closed set of supported digest algorithms.
"""

import hashlib
from enum import Enum
from typing import List, Optional


class HmacAlgorithm(str, Enum):
    """Supported HMAC digest algorithms."""
    SHA256 = "sha256"
    SHA384 = "sha384"
    SHA512 = "sha512"

    @property
    def digest_size(self) -> int:
        """Hash output length in bytes."""
        return hashlib.new(self.value).digest_size

    @property
    def digestmod(self):
        return getattr(hashlib, self.value)

    @classmethod
    def try_from(cls, name: Optional[str]) -> Optional["HmacAlgorithm"]:
        """Case-insensitive lookup; None for anything outside the set."""
        if not isinstance(name, str):
            return None
        try:
            return cls(name.strip().lower())
        except ValueError:
            return None

    @classmethod
    def default(cls) -> "HmacAlgorithm":
        return cls.SHA256

    @classmethod
    def resolve(
        cls,
        name: Optional[str],
        fallback: Optional["HmacAlgorithm"] = None,
    ) -> "HmacAlgorithm":
        """
        Resolve an algorithm name, falling back instead of failing.

        Args:
            name: Stored or requested algorithm name
            fallback: Algorithm used when name is unrecognized
                (defaults to SHA-256)

        Returns:
            The matching algorithm or the fallback
        """
        return cls.try_from(name) or fallback or cls.default()

    @classmethod
    def supported_names(cls) -> List[str]:
        return [algorithm.value for algorithm in cls]
