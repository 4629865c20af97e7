"""
Verification Module
===================
Request context, result types and the verification pipeline.
"""

from .context import RequestContext
from .pipeline import VerificationPipeline
from .result import Failure, FailureReason, Success, VerificationResult

__all__ = [
    "RequestContext",
    "VerificationPipeline",
    "VerificationResult",
    "Success",
    "Failure",
    "FailureReason",
]
