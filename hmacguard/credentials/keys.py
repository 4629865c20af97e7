"""
Key Generation
==============
Cryptographically random client ids, secrets and nonces.
"""

import secrets
from typing import Union

from ..config import HmacConfig
from ..utils import base64url_encode
from .models import Environment


class SecureKeyGenerator:
    """
    Issues key material sized by configuration.

    Client ids look like "<prefix>_<live|test>_<hex>", e.g.
    "hmac_live_9f86d081884c7d65...". Secrets are base64url without padding.
    """

    def __init__(self, config: HmacConfig):
        self.config = config

    def generate_client_id(self, environment: Union[Environment, str] = Environment.TESTING) -> str:
        mode = Environment(environment).key_mode
        random_part = secrets.token_hex(self.config.client_id_length)
        return f"{self.config.key_prefix}_{mode}_{random_part}"

    def generate_secret(self) -> str:
        return base64url_encode(secrets.token_bytes(self.config.secret_length))

    @staticmethod
    def generate_nonce(length: int = 32) -> str:
        """Hex nonce of exactly length characters."""
        return secrets.token_hex((length + 1) // 2)[:length]
