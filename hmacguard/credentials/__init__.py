"""
Credentials Module
==================
Credential model, storage, cached resolution, key generation and rotation.
"""

from .cipher import SecretCipher
from .keys import SecureKeyGenerator
from .models import Credential, Environment
from .repository import CredentialRepository, InMemoryCredentialRepository
from .resolver import CredentialResolver
from .rotation import RotationManager, RotationResult
from .service import CredentialService

__all__ = [
    # Models
    "Credential",
    "Environment",
    # Storage
    "CredentialRepository",
    "InMemoryCredentialRepository",
    "SecretCipher",
    # Resolution
    "CredentialResolver",
    # Management
    "SecureKeyGenerator",
    "RotationManager",
    "RotationResult",
    "CredentialService",
]
