"""Base HTTP client for ABAP Bridge.

This module provides a base async HTTP client with connection pooling,
rate limiting, retry logic, and structured request logging. The tool
gateway and the text-generation service clients build on it.
"""

import asyncio
import time
from typing import Any
from urllib.parse import urljoin

import httpx

from abap_migration.client.exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
)
from abap_migration.utils.logging import (
    get_logger,
    log_api_request,
    sanitize_payload,
    should_log_payloads,
    truncate_payload,
)
from abap_migration.utils.retry import call_with_retry

logger = get_logger(__name__)


class BaseAPIClient:
    """Base async HTTP client with retry logic and rate limiting.

    This client provides:
    - Connection pooling
    - Rate limiting
    - Request/response logging
    - Automatic retry for transient failures
    - Mapping of HTTP error statuses to exceptions
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        verify_ssl: bool = True,
        timeout: int = 120,
        rate_limit: int = 10,
        retry_attempts: int = 3,
        log_payloads: bool = False,
        max_payload_size: int = 10000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize base API client.

        Args:
            base_url: Base URL for API requests
            token: Optional bearer token
            verify_ssl: Whether to verify SSL certificates
            timeout: Request timeout in seconds
            rate_limit: Maximum requests per second
            retry_attempts: Attempts per request for transient failures
            log_payloads: Enable request/response payload logging at DEBUG level
            max_payload_size: Maximum payload size (chars) to log before truncation
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.retry_attempts = retry_attempts

        self.log_payloads = log_payloads
        self.max_payload_size = max_payload_size

        # Rate limiting
        self._rate_limit_lock = asyncio.Lock()
        self._last_request_time: float = 0
        self._min_request_interval = 1.0 / rate_limit if rate_limit > 0 else 0

        self.client = httpx.AsyncClient(
            headers=self._build_headers(),
            timeout=httpx.Timeout(timeout, connect=10.0),
            verify=verify_ssl,
            follow_redirects=True,
            transport=transport,
        )

        logger.debug("client_initialized", base_url=self.base_url, rate_limit=rate_limit)

    def _build_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _build_url(self, endpoint: str) -> str:
        return urljoin(f"{self.base_url}/", endpoint.lstrip("/"))

    async def _rate_limit_wait(self) -> None:
        """Implement rate limiting by waiting if necessary."""
        if self._min_request_interval > 0:
            async with self._rate_limit_lock:
                time_since_last = time.time() - self._last_request_time
                if time_since_last < self._min_request_interval:
                    await asyncio.sleep(self._min_request_interval - time_since_last)
                self._last_request_time = time.time()

    def _handle_error_response(self, response: httpx.Response) -> None:
        """Raise the exception matching an error response.

        Raises:
            AuthenticationError: For 401 responses
            AuthorizationError: For 403 responses
            NotFoundError: For 404 responses
            ConflictError: For 409 responses
            RateLimitError: For 429 responses
            ServerError: For 5xx responses
            APIError: For other error responses
        """
        status_code = response.status_code

        try:
            error_data = response.json()
        except ValueError:
            error_data = {"detail": response.text}
        if not isinstance(error_data, dict):
            error_data = {"detail": str(error_data)}

        error_message = error_data.get("detail", error_data.get("error", "Unknown error"))

        if status_code == 401:
            raise AuthenticationError("Authentication failed", status_code, error_data)
        elif status_code == 403:
            raise AuthorizationError("Authorization failed", status_code, error_data)
        elif status_code == 404:
            raise NotFoundError("Resource not found", status_code, error_data)
        elif status_code == 409:
            raise ConflictError(f"Conflict: {error_message}", status_code, error_data)
        elif status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                "Rate limit exceeded",
                status_code,
                error_data,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        elif 500 <= status_code < 600:
            raise ServerError(f"Server error: {error_message}", status_code, error_data)
        else:
            raise APIError(f"API error: {error_message}", status_code, error_data)

    async def _send(
        self, method: str, endpoint: str, json_data: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        url = self._build_url(endpoint)
        await self._rate_limit_wait()

        if should_log_payloads(logger, self.log_payloads) and json_data is not None:
            logger.debug(
                "api_request_payload",
                method=method,
                url=url,
                payload=truncate_payload(sanitize_payload(json_data), self.max_payload_size),
            )

        start_time = time.time()
        try:
            response = await self.client.request(method=method, url=url, json=json_data)
        except httpx.TimeoutException as e:
            logger.error("timeout_error", method=method, url=url, error=str(e))
            raise NetworkError(f"Request timeout: {e}") from e
        except httpx.TransportError as e:
            logger.error("network_error", method=method, url=url, error=str(e))
            raise NetworkError(f"Network error: {e}") from e

        log_api_request(
            logger,
            method=method,
            url=url,
            status_code=response.status_code,
            duration_ms=(time.time() - start_time) * 1000,
        )

        if should_log_payloads(logger, self.log_payloads) and response.text:
            logger.debug(
                "api_response_payload",
                method=method,
                url=url,
                status_code=response.status_code,
                payload=response.text[: self.max_payload_size],
            )

        if response.status_code >= 400:
            self._handle_error_response(response)

        if not response.text:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise APIError("Response is not valid JSON", response.status_code) from e
        if not isinstance(data, dict):
            raise APIError("Response is not a JSON object", response.status_code)
        return data

    async def request(
        self, method: str, endpoint: str, json_data: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Make an HTTP request with rate limiting, retries and error mapping.

        Args:
            method: HTTP method
            endpoint: API endpoint path
            json_data: JSON request body

        Returns:
            Response JSON object

        Raises:
            NetworkError: For network-related errors after retries
            Various APIError subclasses: For API errors
        """
        return await call_with_retry(
            self._send, method, endpoint, json_data, max_attempts=self.retry_attempts
        )

    async def post(self, endpoint: str, json_data: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self.request("POST", endpoint, json_data=json_data)

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self.client.aclose()
        logger.debug("client_closed", base_url=self.base_url)

    async def __aenter__(self) -> "BaseAPIClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
