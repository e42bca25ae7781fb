"""
Application Context

Everything a job handler needs, built once at process start and passed to
handlers by the JobScheduler. Replaces module-level singletons so tests can
build independent instances.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediasync.config import Settings
from mediasync.core.rate_limit import RateLimiter
from mediasync.core.security import CredentialVault
from mediasync.models.tokens import ClientCredentials
from mediasync.repositories.credentials import CredentialRepository, CredentialStore
from mediasync.services.api_client import BaseApiClient
from mediasync.services.oauth_refresh import TokenRefreshManager

if TYPE_CHECKING:
    from mediasync.scheduler.scheduler import JobScheduler


@dataclass
class AppContext:
    """Shared services for job handlers."""
    settings: Settings
    vault: CredentialVault
    rate_limiter: RateLimiter
    token_manager: TokenRefreshManager
    credential_store: CredentialStore
    scheduler: "JobScheduler | None" = None
    _clients: dict[str, BaseApiClient] = field(default_factory=dict, repr=False)

    def oauth_integrations(self) -> dict[str, ClientCredentials]:
        """OAuth integrations whose tokens are managed, keyed by store key."""
        return {"trakt": self.settings.trakt_credentials}

    async def trakt_access_token(self) -> str:
        return await self.token_manager.ensure_valid_token(
            self.credential_store,
            self.settings.trakt_credentials,
            "trakt",
        )

    def api_client(self, service: str) -> BaseApiClient:
        """
        Shared rate-limited client for a metadata provider.

        Args:
            service: "tmdb", "mdblist" or "trakt"

        Raises:
            KeyError: Unknown service
        """
        if service not in self._clients:
            self._clients[service] = self._build_client(service)
        return self._clients[service]

    def _build_client(self, service: str) -> BaseApiClient:
        settings = self.settings
        policy = settings.default_retry_policy

        if service == "tmdb":
            return BaseApiClient(
                settings.tmdb_base_url, "tmdb", self.rate_limiter,
                retry_policy=policy, api_key=settings.tmdb_api_key,
            )
        if service == "mdblist":
            return BaseApiClient(
                settings.mdblist_base_url, "mdblist", self.rate_limiter,
                retry_policy=policy, api_key=settings.mdblist_api_key,
            )
        if service == "trakt":
            return BaseApiClient(
                settings.trakt_base_url, "trakt", self.rate_limiter,
                retry_policy=policy,
                token_provider=self.trakt_access_token,
                api_key=settings.trakt_client_id,
                api_key_header="trakt-api-key",
            )
        raise KeyError(f"Unknown service: {service}")


def build_context(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> AppContext:
    """Wire up the shared services from settings and a database session factory."""
    vault = CredentialVault.from_settings(settings)
    return AppContext(
        settings=settings,
        vault=vault,
        rate_limiter=RateLimiter(settings.rate_limit_intervals),
        token_manager=TokenRefreshManager(retry_policy=settings.default_retry_policy),
        credential_store=CredentialRepository(session_factory, vault),
    )
