# External service clients and token management
from mediasync.services.api_client import BaseApiClient
from mediasync.services.oauth_refresh import TokenRefreshManager, token_needs_refresh

__all__ = [
    "BaseApiClient",
    "TokenRefreshManager",
    "token_needs_refresh",
]
