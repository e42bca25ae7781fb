# Scheduled job handlers
from mediasync.jobs.token_refresh import refresh_integration_tokens

__all__ = [
    "refresh_integration_tokens",
]
