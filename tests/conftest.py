"""
Shared Test Fixtures
====================
Frozen clock, in-memory wiring and a request signer.
"""

from typing import Optional

import pytest

from hmacguard import HmacConfig, HmacManager
from hmacguard.credentials import SecretCipher
from hmacguard.signing import create_signed_headers
from hmacguard.verification import RequestContext

START = 1_704_067_200  # 2024-01-01T00:00:00Z
ENCRYPTION_KEY = SecretCipher.generate_key()


class FrozenClock:
    """Controllable replacement for time.time."""

    def __init__(self, start: float = START):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def config() -> HmacConfig:
    return HmacConfig(app_environment="testing", encryption_key=ENCRYPTION_KEY)


@pytest.fixture
def manager(config, clock) -> HmacManager:
    return HmacManager.in_memory(config, clock=clock)


@pytest.fixture
async def issued(manager):
    """A testing credential and its plain secret."""
    credential, secret = await manager.generate_credentials("testing")
    return credential, secret


@pytest.fixture
def sign_request(clock):
    """Build a signed RequestContext the way a client would."""

    def _sign(
        client_id: str,
        secret: str,
        method: str = "POST",
        path: str = "/api/search",
        body: bytes = b'{"query":"test"}',
        timestamp: Optional[int] = None,
        nonce: Optional[str] = None,
        ip_address: str = "203.0.113.7",
        algorithm: str = "sha256",
    ) -> RequestContext:
        headers = create_signed_headers(
            client_id,
            secret,
            method,
            path,
            body,
            algorithm=algorithm,
            timestamp=int(clock()) if timestamp is None else timestamp,
            nonce=nonce,
        )
        path_only, _, query = path.partition("?")
        return RequestContext.from_headers(
            headers,
            method=method,
            path=path_only,
            query=query or None,
            body=body,
            ip_address=ip_address,
            user_agent="pytest",
        )

    return _sign
