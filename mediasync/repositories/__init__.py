"""
Repository layer for mediasync.

Repositories wrap SQLAlchemy sessions and hide encryption details from
callers.
"""

from mediasync.repositories.credentials import CredentialRepository, CredentialStore

__all__ = [
    "CredentialRepository",
    "CredentialStore",
]
