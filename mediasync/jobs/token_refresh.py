"""
OAuth Token Refresh Job

Keeps connected integrations' tokens fresh so user-facing syncs never hit an
expired token. Tokens expiring within 24 hours are refreshed; integrations
that are not connected or not configured are skipped.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from mediasync.core.exceptions import MediaSyncError, NotConnectedError, error_to_dict

if TYPE_CHECKING:
    from mediasync.context import AppContext

logger = logging.getLogger(__name__)

JOB_NAME = "oauth-token-refresh"


async def refresh_integration_tokens(context: "AppContext") -> dict[str, Any]:
    """
    Make sure every configured OAuth integration holds a valid token.

    Per-integration failures are logged and collected, never raised.

    Returns:
        Summary of refresh results
    """
    start_time = datetime.utcnow()
    logger.info("OAuth token refresh job started")

    results: dict[str, Any] = {
        "checked": 0,
        "valid": 0,
        "skipped": 0,
        "errors": [],
    }

    for integration, credentials in context.oauth_integrations().items():
        if not credentials.configured:
            logger.debug(f"{integration} OAuth not configured, skipping")
            results["skipped"] += 1
            continue

        results["checked"] += 1
        try:
            await context.token_manager.ensure_valid_token(
                context.credential_store, credentials, integration
            )
            results["valid"] += 1
        except NotConnectedError:
            logger.info(f"{integration} not connected, nothing to refresh")
            results["skipped"] += 1
        except MediaSyncError as e:
            logger.warning(f"Token refresh for {integration} failed: {e}")
            results["errors"].append({"integration": integration, **error_to_dict(e)})

    duration_seconds = (datetime.utcnow() - start_time).total_seconds()
    results["duration_seconds"] = duration_seconds

    logger.info(
        f"OAuth token refresh completed in {duration_seconds:.2f}s: "
        f"Checked={results['checked']}, "
        f"Valid={results['valid']}, "
        f"Skipped={results['skipped']}, "
        f"Errors={len(results['errors'])}"
    )
    return results
