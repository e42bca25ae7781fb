"""
Credential Repository

Persists OAuth token pairs per integration. Tokens are encrypted with the
CredentialVault before they reach the database; values that can no longer be
decrypted (tampered row, rotated key) read back as None.
"""

import logging
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediasync.core.security import CredentialVault
from mediasync.models.orm import IntegrationCredential
from mediasync.models.tokens import OAuthTokenPair

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """Storage collaborator used by the token refresh manager."""

    async def get_tokens(self, integration: str) -> OAuthTokenPair | None: ...

    async def save_tokens(self, integration: str, tokens: OAuthTokenPair) -> None: ...


class CredentialRepository:
    """
    SQLAlchemy-backed CredentialStore.

    Each call opens its own session so the repository can be shared by
    concurrently running jobs.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        vault: CredentialVault,
    ):
        self.session_factory = session_factory
        self.vault = vault

    async def get_tokens(self, integration: str) -> OAuthTokenPair | None:
        """
        Load and decrypt the token pair for an integration.

        Args:
            integration: Integration key (e.g. "trakt")

        Returns:
            Token pair, or None if nothing is stored
        """
        async with self.session_factory() as session:
            row = await session.get(IntegrationCredential, integration)

        if row is None:
            return None

        return OAuthTokenPair(
            access_token=self.vault.decrypt(row.access_token_encrypted, row.access_token_iv),
            refresh_token=self.vault.decrypt(row.refresh_token_encrypted, row.refresh_token_iv),
            expires_at=row.expires_at,
        )

    async def save_tokens(self, integration: str, tokens: OAuthTokenPair) -> None:
        """
        Encrypt and upsert the token pair for an integration.

        Args:
            integration: Integration key
            tokens: Token pair to store
        """
        access = self.vault.encrypt(tokens.access_token)
        refresh = self.vault.encrypt(tokens.refresh_token)

        async with self.session_factory() as session:
            row = await session.get(IntegrationCredential, integration)
            if row is None:
                row = IntegrationCredential(integration=integration)
                session.add(row)

            row.access_token_encrypted = access.ciphertext if access else None
            row.access_token_iv = access.iv if access else None
            row.refresh_token_encrypted = refresh.ciphertext if refresh else None
            row.refresh_token_iv = refresh.iv if refresh else None
            row.expires_at = tokens.expires_at

            await session.commit()

        logger.info(f"Stored tokens for {integration} (expires_at={tokens.expires_at})")

    async def delete_tokens(self, integration: str) -> bool:
        """
        Remove stored tokens (integration disconnected).

        Returns:
            True if a row was deleted
        """
        async with self.session_factory() as session:
            result = await session.execute(
                delete(IntegrationCredential).where(
                    IntegrationCredential.integration == integration
                )
            )
            await session.commit()

        deleted = bool(result.rowcount)
        if deleted:
            logger.info(f"Removed stored tokens for {integration}")
        return deleted

    async def list_integrations(self) -> list[str]:
        """Integration keys that have a stored credential row."""
        async with self.session_factory() as session:
            result = await session.execute(select(IntegrationCredential.integration))
            return list(result.scalars().all())
