"""
mediasync Models

ORM models (database tables):
    from mediasync.models import IntegrationCredential
    from mediasync.models.orm import IntegrationCredential

Token value types:
    from mediasync.models import OAuthTokenPair, ClientCredentials
"""

from mediasync.models.orm import Base, IntegrationCredential
from mediasync.models.tokens import ClientCredentials, OAuthTokenPair

__all__ = [
    "Base",
    "IntegrationCredential",
    "ClientCredentials",
    "OAuthTokenPair",
]
