"""
Guards Module
=============
Replay, attempt and source-address guards with fail-open / fail-closed
backend handling.
"""

from .attempts import AttemptLimiter
from .failures import BACKEND_ERRORS, run_guarded
from .ip import IpGuard
from .nonce import NonceGuard

__all__ = [
    "NonceGuard",
    "AttemptLimiter",
    "IpGuard",
    "run_guarded",
    "BACKEND_ERRORS",
]
