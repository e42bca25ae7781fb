"""
Base API Client

Consolidated HTTP client for external API integrations (TMDB, MDBList,
Trakt, media servers). Every request:

1. waits on the shared RateLimiter, keyed by the client's service name
2. runs inside the retry executor
3. maps transport failures to NetworkError and non-2xx responses to
   HttpStatusError
"""

import asyncio
import errno
import logging
import socket
from typing import Any, Awaitable, Callable

import aiohttp

from mediasync.core.exceptions import HttpStatusError, NetworkError
from mediasync.core.rate_limit import RateLimiter
from mediasync.core.retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str]]

_GAI_ERROR_CODES = {
    socket.EAI_NONAME: "ENOTFOUND",
    socket.EAI_AGAIN: "EAI_AGAIN",
}


def transport_error_code(error: BaseException) -> str:
    """
    Best-effort transport error code for a failed request.

    Returns errno names such as ECONNREFUSED, ENOTFOUND for DNS failures,
    ETIMEDOUT for timeouts, or NETWORK_ERROR when nothing more specific is
    known.
    """
    if isinstance(error, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
        return "ETIMEDOUT"

    os_error = getattr(error, "os_error", None)
    if isinstance(error, OSError) and os_error is None:
        os_error = error

    if isinstance(os_error, socket.gaierror):
        return _GAI_ERROR_CODES.get(os_error.errno, "ENOTFOUND")
    if isinstance(os_error, OSError) and os_error.errno in errno.errorcode:
        return errno.errorcode[os_error.errno]

    if isinstance(error, aiohttp.ServerDisconnectedError):
        return "ECONNRESET"
    return "NETWORK_ERROR"


class BaseApiClient:
    """
    Rate-limited, retrying JSON client for one external service.

    Features:
    - Rate limiting per service name
    - Retry with exponential backoff for transient failures
    - Bearer authentication through an async token provider
    - API key as header or query parameter
    """

    def __init__(
        self,
        base_url: str,
        service_name: str,
        rate_limiter: RateLimiter,
        retry_policy: RetryPolicy | None = None,
        token_provider: TokenProvider | None = None,
        api_key: str | None = None,
        api_key_header: str | None = None,
        timeout: int = 30,
    ):
        """
        Initialize API client

        Args:
            base_url: Service base URL (trailing slash is ignored)
            service_name: Rate limiter key and name used in error messages
            rate_limiter: Shared rate limiter
            retry_policy: Retry policy for every request
            token_provider: Coroutine returning a bearer access token
            api_key: Optional API key
            api_key_header: Header carrying the API key; when unset the key
                is sent as the api_key query parameter
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.service_name = service_name
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy or RetryPolicy()
        self.token_provider = token_provider
        self.api_key = api_key
        self.api_key_header = api_key_header
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    def build_url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def build_headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if self.api_key and self.api_key_header:
            headers[self.api_key_header] = self.api_key
        if self.token_provider:
            headers["Authorization"] = f"Bearer {await self.token_provider()}"
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        endpoint: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """
        Send a request with rate limiting and retries.

        Returns:
            Decoded JSON body, or None for an empty body

        Raises:
            HttpStatusError: Non-2xx response (non-retryable status)
            NetworkError: Server unreachable (non-retryable code)
            RetryExhaustedError: Every attempt failed with a retryable error
        """
        query = dict(params or {})
        if self.api_key and not self.api_key_header:
            query["api_key"] = self.api_key

        async def attempt() -> Any:
            await self.rate_limiter.wait_for_quota(self.service_name)
            request_headers = await self.build_headers(headers)
            return await self._send(method, self.build_url(endpoint), json, query, request_headers)

        return await with_retry(attempt, self.retry_policy)

    async def _send(
        self,
        method: str,
        url: str,
        json: Any,
        params: dict[str, Any],
        headers: dict[str, str],
    ) -> Any:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(
                    method, url, json=json, params=params or None, headers=headers
                ) as response:
                    text = await response.text()

                    if not 200 <= response.status < 300:
                        message = f"{self.service_name} API error: {response.status} {response.reason}"
                        try:
                            body = await response.json(content_type=None)
                            if isinstance(body, dict) and body.get("message"):
                                message = body["message"]
                        except ValueError:
                            pass
                        raise HttpStatusError(message, status=response.status)

                    if not text:
                        return None
                    try:
                        return await response.json(content_type=None)
                    except ValueError as e:
                        raise HttpStatusError(
                            f"{self.service_name} API returned an invalid body",
                            status=response.status,
                        ) from e

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            code = transport_error_code(e)
            logger.warning(f"Network error calling {self.service_name}: {e} ({code})")
            raise NetworkError(
                f"Network error: Failed to connect to {self.service_name} server at {self.base_url}",
                code=code,
            ) from e

    async def get(self, endpoint: str, **kwargs: Any) -> Any:
        return await self.request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, data: Any = None, **kwargs: Any) -> Any:
        return await self.request("POST", endpoint, json=data, **kwargs)

    async def put(self, endpoint: str, data: Any = None, **kwargs: Any) -> Any:
        return await self.request("PUT", endpoint, json=data, **kwargs)

    async def delete(self, endpoint: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", endpoint, **kwargs)

    async def test_connection(self, endpoint: str = "/") -> dict[str, Any]:
        """
        Check that the service answers.

        Returns:
            {"success": True} or {"success": False, "error": message}
        """
        try:
            await self.get(endpoint)
            return {"success": True}
        except Exception as e:
            logger.info(f"{self.service_name} connection test failed: {e}")
            return {"success": False, "error": str(e)}
