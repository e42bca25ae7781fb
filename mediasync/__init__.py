"""
mediasync - media-list synchronization backend.

Background job scheduling and external-API plumbing: cron jobs, retries,
rate limiting, OAuth token refresh and encrypted credential storage.
"""

__version__ = "0.1.0"
