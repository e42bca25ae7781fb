"""
OAuth token value types shared by the token refresh manager, the credential
repository and the API clients.
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class OAuthTokenPair:
    """Access/refresh token pair for one integration."""
    access_token: str | None
    refresh_token: str | None
    expires_at: datetime | None


@dataclass(frozen=True)
class ClientCredentials:
    """OAuth client registration used for the refresh_token grant."""
    client_id: str | None
    client_secret: str | None
    redirect_uri: str
    token_url: str

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)
