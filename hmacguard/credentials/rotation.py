"""
Secret Rotation
===============
Issues a new secret while the previous one stays valid for a grace period.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

import structlog

from ..config import HmacConfig
from ..utils import sanitize_for_log
from .keys import SecureKeyGenerator
from .models import Credential
from .repository import CredentialRepository
from .resolver import CredentialResolver

logger = structlog.get_logger(__name__)


@dataclass
class RotationResult:
    """Outcome of a rotation. new_secret is shown to the operator once."""
    credential: Credential
    new_secret: str = field(repr=False)
    old_secret_expires_at: datetime


class RotationManager:
    """
    Rotates credential secrets.

    The current secret moves to old_client_secret with a deadline of
    now + grace_days. The verification pipeline compares that deadline
    at check time, so the old secret stops working exactly when it
    passes even if nothing clears the stored fields.
    """

    def __init__(
        self,
        repository: CredentialRepository,
        resolver: CredentialResolver,
        config: HmacConfig,
        key_generator: Optional[SecureKeyGenerator] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.repository = repository
        self.resolver = resolver
        self.config = config
        self.key_generator = key_generator or SecureKeyGenerator(config)
        self._clock = clock

    async def rotate(
        self, credential: Credential, grace_days: Optional[int] = None
    ) -> Tuple[str, datetime]:
        """
        Rotate the credential's secret.

        Args:
            credential: Credential to rotate
            grace_days: Days the old secret stays valid
                (defaults to rotation_grace_days)

        Returns:
            Tuple of (new_secret, old_secret_expires_at)
        """
        result = await self.rotate_credential(credential, grace_days)
        return result.new_secret, result.old_secret_expires_at

    async def rotate_credential(
        self, credential: Credential, grace_days: Optional[int] = None
    ) -> RotationResult:
        """Rotate and also return the stored credential."""
        grace_days = self.config.rotation_grace_days if grace_days is None else grace_days
        if grace_days < 0:
            raise ValueError("grace_days cannot be negative")

        new_secret = self.key_generator.generate_secret()
        old_expiry = datetime.fromtimestamp(self._clock(), tz=timezone.utc) + timedelta(days=grace_days)

        rotated = credential.with_changes(
            client_secret=new_secret,
            old_client_secret=credential.client_secret,
            old_secret_expires_at=old_expiry,
        )
        stored = await self.repository.update(rotated)
        await self.resolver.invalidate(credential.client_id)

        logger.info(
            "credential_secret_rotated",
            client_id=sanitize_for_log(credential.client_id),
            grace_days=grace_days,
            old_secret_expires_at=old_expiry.isoformat(),
        )
        return RotationResult(credential=stored, new_secret=new_secret, old_secret_expires_at=old_expiry)
