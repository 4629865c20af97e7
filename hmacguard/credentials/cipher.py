"""
Secret Encryption
=================
Symmetric encryption of client secrets at the storage boundary.
"""

from typing import Optional, Union

import structlog
from cryptography.fernet import Fernet, InvalidToken

from ..config import HmacConfig
from ..exceptions import ConfigurationError

logger = structlog.get_logger(__name__)


class SecretCipher:
    """
    Fernet wrapper used by repositories and the credential cache.

    Example:
        cipher = SecretCipher.from_config(HmacConfig.from_env())
        stored = cipher.encrypt(secret)
        secret = cipher.decrypt(stored)
    """

    def __init__(self, key: Union[str, bytes]):
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError("Invalid secret encryption key") from e

    @classmethod
    def from_config(cls, config: HmacConfig) -> "SecretCipher":
        """
        Cipher for config.encryption_key.

        Processes sharing a cache or database must share this key.

        Raises:
            ConfigurationError: If no key is configured
        """
        if not config.encryption_key:
            raise ConfigurationError("HMAC_ENCRYPTION_KEY is not set")
        return cls(config.encryption_key)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")

    def encrypt(self, secret: Optional[str]) -> Optional[str]:
        if secret is None:
            return None
        return self._fernet.encrypt(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, token: Optional[str]) -> Optional[str]:
        """
        Decrypt a stored secret.

        Returns:
            The plain secret, or None when the token is absent or was not
            produced with this key
        """
        if token is None:
            return None
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError):
            logger.error("secret_decryption_failed")
            return None
