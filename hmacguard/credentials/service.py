"""
Credential Service
==================
Credential lifecycle management. Every write invalidates the resolver
cache for the affected client id before returning.
"""

from datetime import datetime
from typing import List, Optional, Tuple, Union

import structlog

from ..config import HmacConfig
from ..exceptions import CredentialNotFoundError, InvalidEnvironmentError
from ..signing import HmacAlgorithm
from ..utils import sanitize_for_log
from .keys import SecureKeyGenerator
from .models import Credential, Environment
from .repository import CredentialRepository
from .resolver import CredentialResolver
from .rotation import RotationManager, RotationResult

logger = structlog.get_logger(__name__)


class CredentialService:
    """
    Issue, rotate and manage API credentials.

    Example:
        credential, secret = await service.generate("production", created_by="ops")
        # secret is returned once; only its encrypted form is stored
    """

    def __init__(
        self,
        repository: CredentialRepository,
        resolver: CredentialResolver,
        config: HmacConfig,
        rotation: Optional[RotationManager] = None,
        key_generator: Optional[SecureKeyGenerator] = None,
    ):
        self.repository = repository
        self.resolver = resolver
        self.config = config
        self.key_generator = key_generator or SecureKeyGenerator(config)
        self.rotation = rotation or RotationManager(
            repository, resolver, config, key_generator=self.key_generator
        )

    async def _refresh(self, client_id: str) -> Credential:
        await self.resolver.invalidate(client_id)
        credential = await self.repository.find_by_client_id(client_id)
        if credential is None:
            raise CredentialNotFoundError(client_id)
        return credential

    async def generate(
        self,
        environment: Union[Environment, str] = Environment.TESTING,
        expires_at: Optional[datetime] = None,
        tenant_id: Optional[str] = None,
        created_by: Optional[str] = None,
        algorithm: Optional[str] = None,
    ) -> Tuple[Credential, str]:
        """
        Create a credential.

        Returns:
            Tuple of (credential, plain_secret). The plain secret is never
            retrievable again.

        Raises:
            InvalidEnvironmentError: If environment is not supported
        """
        try:
            environment = Environment(environment)
        except ValueError:
            raise InvalidEnvironmentError(str(environment), Environment.values())

        plain_secret = self.key_generator.generate_secret()
        credential = await self.repository.create(Credential(
            client_id=self.key_generator.generate_client_id(environment),
            client_secret=plain_secret,
            environment=environment,
            algorithm=HmacAlgorithm.resolve(algorithm or self.config.algorithm).value,
            is_active=True,
            expires_at=expires_at,
            tenant_id=tenant_id,
            created_by=created_by,
        ))

        logger.info(
            "credential_generated",
            client_id=sanitize_for_log(credential.client_id),
            environment=environment.value,
        )
        return credential, plain_secret

    async def rotate_secret(
        self, credential: Credential, grace_days: Optional[int] = None
    ) -> RotationResult:
        return await self.rotation.rotate_credential(credential, grace_days)

    async def regenerate_client_id(self, credential: Credential) -> Credential:
        """New client id, same secret and environment. The old id stops resolving."""
        old_client_id = credential.client_id
        updated = await self.repository.update(credential.with_changes(
            client_id=self.key_generator.generate_client_id(credential.environment),
        ))
        await self.resolver.invalidate(old_client_id)

        logger.info(
            "credential_client_id_regenerated",
            old_client_id=sanitize_for_log(old_client_id),
            client_id=sanitize_for_log(updated.client_id),
        )
        return updated

    async def activate(self, credential: Credential) -> Credential:
        await self.repository.activate(credential.client_id)
        return await self._refresh(credential.client_id)

    async def deactivate(self, credential: Credential) -> Credential:
        await self.repository.deactivate(credential.client_id)
        logger.info("credential_deactivated", client_id=sanitize_for_log(credential.client_id))
        return await self._refresh(credential.client_id)

    async def toggle_status(self, credential: Credential) -> Credential:
        if credential.is_active:
            return await self.deactivate(credential)
        return await self.activate(credential)

    async def set_expiration(self, credential: Credential, expires_at: Optional[datetime]) -> Credential:
        await self.repository.update(credential.with_changes(expires_at=expires_at))
        return await self._refresh(credential.client_id)

    async def delete(self, credential: Credential) -> bool:
        if credential.id is None:
            return False
        deleted = await self.repository.delete(credential.id)
        await self.resolver.invalidate(credential.client_id)
        return deleted

    async def cleanup_expired(self, now: Optional[datetime] = None) -> List[str]:
        """
        Deactivate expired credentials.

        Returns:
            Client ids that were deactivated
        """
        expired = await self.repository.get_expired(now)
        deactivated = []
        for credential in expired:
            if await self.repository.deactivate(credential.client_id):
                await self.resolver.invalidate(credential.client_id)
                deactivated.append(credential.client_id)
        if deactivated:
            logger.info("expired_credentials_deactivated", count=len(deactivated))
        return deactivated
