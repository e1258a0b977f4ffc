"""Base connector infrastructure for the upstream market-data APIs.

Provides the BaseConnector abstract class with:
- Async HTTP client via httpx with connection pooling
- Retry with exponential backoff + jitter via tenacity
- Rate limiting via a per-connector TokenBucketRateLimiter
- Structured logging via structlog

Exception hierarchy:
- ConnectorError: base for all connector errors
- UpstreamError: non-2xx status after retries are exhausted
- RateLimitError: API rate limit hit (HTTP 429), an UpstreamError with status 429
- DataParsingError: response body is not the expected JSON
- InvalidFormatError: an expected nested field is missing or has the wrong type
- FetchError: transport failure after retries exhausted
"""

from __future__ import annotations

import abc
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)
from tenacity.wait import wait_base

from defi_worker.connectors.rate_limiter import TokenBucketRateLimiter
from defi_worker.core.errors import WorkerError
from defi_worker.core.utils.logging_config import get_logger


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------
class ConnectorError(WorkerError):
    """Base exception for all connector errors."""


class UpstreamError(ConnectorError):
    """Raised when the API answers with a non-2xx status."""

    def __init__(self, status: int, message: str = "") -> None:
        self.status = status
        super().__init__(message or f"upstream returned HTTP {status}")


class RateLimitError(UpstreamError):
    """Raised when the API returns a 429 rate limit response."""

    def __init__(self, message: str = "") -> None:
        super().__init__(429, message or "rate limit exceeded (HTTP 429)")


class DataParsingError(ConnectorError):
    """Raised when response data cannot be parsed into the expected format."""


class InvalidFormatError(DataParsingError):
    """Raised when a decoded payload lacks a required field or has the wrong shape."""


class FetchError(ConnectorError):
    """Raised when an HTTP request fails after all retry attempts."""


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, UpstreamError):
        return exc.status == 429 or exc.status >= 500
    return False


# ---------------------------------------------------------------------------
# BaseConnector ABC
# ---------------------------------------------------------------------------
class BaseConnector(abc.ABC):
    """Abstract base class for the upstream API clients.

    Subclasses MUST override:
        SOURCE_NAME: str - identifier (e.g., "COINGECKO")
        BASE_URL: str - base API URL

    Subclasses MAY override:
        RATE_LIMIT_PER_MINUTE: int - token bucket capacity per minute
        MAX_RETRIES: int - attempts per request (default 3)
        TIMEOUT_SECONDS: float - HTTP timeout per request (default 10.0)
        API_KEY_HEADER: str - header carrying ``api_key`` when one is set

    Usage::

        async with MyConnector() as conn:
            data = await conn.fetch_something()
    """

    # Subclasses MUST override
    SOURCE_NAME: str = ""
    BASE_URL: str = ""

    # Subclasses MAY override
    RATE_LIMIT_PER_MINUTE: int = 60
    MAX_RETRIES: int = 3
    TIMEOUT_SECONDS: float = 10.0
    API_KEY_HEADER: str = ""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str = "",
        rate_limit_per_minute: int | None = None,
        max_retries: int | None = None,
        timeout_seconds: float | None = None,
        retry_wait: wait_base | None = None,
        limiter: TokenBucketRateLimiter | None = None,
        log: structlog.BoundLogger | None = None,
    ) -> None:
        self.base_url = base_url or self.BASE_URL
        self.api_key = api_key
        self.max_retries = max_retries or self.MAX_RETRIES
        self.timeout_seconds = timeout_seconds or self.TIMEOUT_SECONDS
        self.retry_wait = retry_wait or wait_exponential_jitter(initial=1, max=30, jitter=5)
        self.log = (log or get_logger("connector")).bind(connector=self.SOURCE_NAME)
        self.limiter = limiter or TokenBucketRateLimiter(
            capacity=rate_limit_per_minute or self.RATE_LIMIT_PER_MINUTE,
            refill_interval=60.0,
            log=self.log,
        )
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "BaseConnector":
        """Create and configure the httpx async client."""
        headers = {"Accept": "application/json"}
        if self.api_key and self.API_KEY_HEADER:
            headers[self.API_KEY_HEADER] = self.api_key
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(self.timeout_seconds),
            limits=httpx.Limits(
                max_connections=10,
                max_keepalive_connections=5,
            ),
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the httpx client and stop the limiter's refill task."""
        self.limiter.stop()
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Return the active httpx client.

        Raises:
            ConnectorError: If the client has not been initialized via __aenter__.
        """
        if self._client is None:
            raise ConnectorError(
                f"{self.SOURCE_NAME}: HTTP client not initialized. "
                "Use 'async with connector:' context manager."
            )
        return self._client

    async def _request(
        self, method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        """Rate-limited HTTP request with retry.

        Every attempt, retries included, takes one limiter token first.

        Retries on: transport errors, HTTP 429, HTTP 5xx.
        Backoff: exponential with jitter (initial=1s, max=30s, jitter=5s).

        Args:
            method: HTTP method (GET, POST, etc.)
            url: URL path (relative to the base URL) or absolute URL.
            **kwargs: Additional arguments passed to httpx.AsyncClient.request.

        Returns:
            The successful httpx.Response.

        Raises:
            UpstreamError: On a non-2xx status (RateLimitError for 429).
            DataParsingError: If the response body cannot be decoded.
            FetchError: If the transport keeps failing until retries run out, or
                on any other httpx error (e.g. too many redirects).
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_retryable),
                stop=stop_after_attempt(self.max_retries),
                wait=self.retry_wait,
                reraise=True,
            ):
                with attempt:
                    await self.limiter.acquire()
                    self.log.debug(
                        "http_request",
                        method=method,
                        url=url,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    response = await self.client.request(method, url, **kwargs)
                    if response.status_code == 429:
                        raise RateLimitError(
                            f"{self.SOURCE_NAME}: Rate limit exceeded (HTTP 429)"
                        )
                    if not response.is_success:
                        raise UpstreamError(
                            response.status_code,
                            f"{self.SOURCE_NAME}: HTTP {response.status_code} for {url}",
                        )
                    return response
        except httpx.DecodingError as exc:
            self.log.warning("http_decoding_failed", url=url, error=str(exc))
            raise DataParsingError(
                f"{self.SOURCE_NAME}: undecodable body from {url}: {exc}"
            ) from exc
        except httpx.TransportError as exc:
            self.log.warning("http_transport_failed", url=url, error=str(exc))
            raise FetchError(f"{self.SOURCE_NAME}: {method} {url} failed: {exc}") from exc
        except httpx.HTTPError as exc:
            self.log.warning("http_request_failed", url=url, error=str(exc))
            raise FetchError(f"{self.SOURCE_NAME}: {method} {url} failed: {exc}") from exc
        except UpstreamError as exc:
            self.log.warning("http_status_error", url=url, status=exc.status)
            raise

        # Should not be reached, but satisfies type checker
        raise FetchError(f"{self.SOURCE_NAME}: Request failed after retries")  # pragma: no cover

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """GET *url* and decode the JSON body.

        Raises:
            DataParsingError: If the body is not valid JSON.
        """
        response = await self._request("GET", url, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise DataParsingError(
                f"{self.SOURCE_NAME}: invalid JSON from {url}: {exc}"
            ) from exc
