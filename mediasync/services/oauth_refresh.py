"""
OAuth Token Refresh Manager

Keeps integration access tokens (Trakt) valid. Tokens are refreshed eagerly:
anything expiring within the next 24 hours is treated as stale, so jobs never
start a long sync with a token that dies halfway through.

Refreshes are single-flight per integration: the first caller to see a stale
token starts one refresh task and every concurrent caller awaits that same
task, sharing its token or its exception. The task is forgotten once it
finishes, so the next stale read starts a fresh attempt.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable

import aiohttp

from mediasync.core.exceptions import (
    ConfigurationError,
    HttpStatusError,
    NetworkError,
    NotConnectedError,
    ReauthorizationRequiredError,
)
from mediasync.core.retry import RetryPolicy, with_retry
from mediasync.models.tokens import ClientCredentials, OAuthTokenPair
from mediasync.repositories.credentials import CredentialStore
from mediasync.services.api_client import transport_error_code

logger = logging.getLogger(__name__)

REFRESH_LOOKAHEAD = timedelta(hours=24)

# Used when a provider omits expires_in
DEFAULT_EXPIRES_IN_SECONDS = 3600


def token_needs_refresh(
    expires_at: datetime | None,
    now: datetime | None = None,
) -> bool:
    """
    Check whether a token should be refreshed.

    Args:
        expires_at: Token expiry (naive UTC), or None if unknown
        now: Current time (default: datetime.utcnow())

    Returns:
        True if the expiry is unknown or falls within the next 24 hours
    """
    if expires_at is None:
        return True

    now = now or datetime.utcnow()
    return expires_at < now + REFRESH_LOOKAHEAD


class TokenRefreshManager:
    """
    Refreshes OAuth tokens against the provider's token endpoint and writes
    the new pair back through a CredentialStore.
    """

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        timeout: int = 10,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """
        Initialize token refresh manager

        Args:
            retry_policy: Retry policy for token requests
            timeout: Request timeout in seconds (default: 10)
            clock: Returns the current naive UTC time
        """
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._clock = clock
        self._inflight: dict[str, asyncio.Task] = {}

    def needs_refresh(self, expires_at: datetime | None) -> bool:
        return token_needs_refresh(expires_at, self._clock())

    async def refresh_token(
        self,
        refresh_token: str,
        credentials: ClientCredentials,
    ) -> OAuthTokenPair:
        """
        Exchange a refresh token for a new token pair.

        Args:
            refresh_token: Current refresh token
            credentials: OAuth client registration

        Returns:
            New token pair with expires_at = now + expires_in

        Raises:
            ConfigurationError: Client ID or secret not configured
            NetworkError: Token endpoint unreachable
            HttpStatusError: Token endpoint answered with a non-2xx status
            RetryExhaustedError: Transient failures on every attempt
        """
        if not credentials.configured:
            raise ConfigurationError(
                "OAuth client credentials not configured",
                setting="client_id/client_secret",
            )

        payload = {
            "refresh_token": refresh_token,
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "redirect_uri": credentials.redirect_uri,
            "grant_type": "refresh_token",
        }

        logger.info(f"Refreshing access token at {credentials.token_url}")
        data = await with_retry(
            lambda: self._post_token_request(credentials.token_url, payload),
            self.retry_policy,
        )
        return self._parse_token_response(data, refresh_token)

    async def ensure_valid_token(
        self,
        store: CredentialStore,
        credentials: ClientCredentials,
        integration: str = "trakt",
    ) -> str:
        """
        Return a usable access token, refreshing it first if it is stale.

        Args:
            store: Credential storage collaborator
            credentials: OAuth client registration
            integration: Integration key in the store

        Returns:
            Access token

        Raises:
            NotConnectedError: No access token on record
            ReauthorizationRequiredError: Token stale and no refresh token
        """
        tokens = await store.get_tokens(integration)
        if tokens is None or not tokens.access_token:
            raise NotConnectedError(integration)

        if not self.needs_refresh(tokens.expires_at):
            return tokens.access_token

        task = self._inflight.get(integration)
        if task is None:
            task = asyncio.create_task(
                self._refresh_stored(store, credentials, integration, tokens.access_token)
            )
            self._inflight[integration] = task
            task.add_done_callback(lambda done: self._clear_inflight(integration, done))

        # A cancelled waiter must not cancel the refresh other callers share
        return await asyncio.shield(task)

    def _clear_inflight(self, integration: str, task: asyncio.Task) -> None:
        if self._inflight.get(integration) is task:
            del self._inflight[integration]
        if not task.cancelled():
            # Mark retrieved; waiters may all have been cancelled
            task.exception()

    async def _refresh_stored(
        self,
        store: CredentialStore,
        credentials: ClientCredentials,
        integration: str,
        stale_access_token: str,
    ) -> str:
        # The token may have been refreshed since the caller read it
        current = await store.get_tokens(integration)
        if current is None or not current.access_token:
            raise NotConnectedError(integration)

        if current.access_token != stale_access_token or not self.needs_refresh(current.expires_at):
            return current.access_token

        if not current.refresh_token:
            raise ReauthorizationRequiredError(integration)

        new_tokens = await self.refresh_token(current.refresh_token, credentials)
        await store.save_tokens(integration, new_tokens)

        logger.info(f"Refreshed {integration} token (expires_at={new_tokens.expires_at})")
        return new_tokens.access_token

    async def _post_token_request(self, token_url: str, payload: dict) -> dict[str, Any]:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    token_url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                ) as response:
                    if not 200 <= response.status < 300:
                        logger.error(f"Token refresh failed with status {response.status}")
                        raise HttpStatusError(
                            f"Failed to refresh token: {response.status}",
                            status=response.status,
                        )

                    try:
                        data = await response.json(content_type=None)
                    except ValueError as e:
                        raise HttpStatusError(
                            "Token endpoint returned an invalid body",
                            status=response.status,
                        ) from e

                    if not isinstance(data, dict) or not data.get("access_token"):
                        raise HttpStatusError(
                            "Token endpoint response missing access_token",
                            status=response.status,
                        )
                    return data

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            code = transport_error_code(e)
            logger.warning(f"Network error during token refresh: {e} ({code})")
            raise NetworkError(
                "Network error: Failed to connect to the authorization server",
                code=code,
            ) from e

    def _parse_token_response(self, data: dict[str, Any], previous_refresh_token: str) -> OAuthTokenPair:
        expires_in = data.get("expires_in")
        if not expires_in:
            logger.warning("OAuth response missing expires_in, defaulting to 1 hour")
            expires_in = DEFAULT_EXPIRES_IN_SECONDS

        # Keep the old refresh token if the provider did not rotate it
        refresh_token = data.get("refresh_token") or previous_refresh_token

        return OAuthTokenPair(
            access_token=data["access_token"],
            refresh_token=refresh_token,
            expires_at=self._clock() + timedelta(seconds=int(expires_in)),
        )
