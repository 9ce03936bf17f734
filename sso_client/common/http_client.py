"""Async HTTP client with bounded retry logic using httpx and tenacity."""

from typing import Any, Dict, Optional

import httpx
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .config import ConsoleConfig, HTTPConfig

logger = structlog.get_logger(__name__)

RETRYABLE_NETWORK_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.PoolTimeout,
    httpx.NetworkError,
)


class AsyncHTTPClient:
    """
    Async HTTP client with connection pooling and bounded retries.

    Requests are retried on network errors and on the configured retryable
    status codes, with a fixed delay between attempts and a hard cap on the
    number of attempts. 4xx responses are returned to the caller untouched.

    Example:
        >>> async with AsyncHTTPClient(ConsoleConfig(), base_url="https://console") as client:
        ...     response = await client.get("/.well-known/jwks.json")
    """

    def __init__(
        self,
        retry_config: ConsoleConfig,
        base_url: str = "",
        http_config: Optional[HTTPConfig] = None,
    ):
        """
        Initialize the async HTTP client.

        Args:
            retry_config: Timeout, attempt count and retry delay
            base_url: Base URL for all requests (optional)
            http_config: Connection pool settings (optional)
        """
        self.retry_config = retry_config
        self.http_config = http_config or HTTPConfig()
        self.base_url = base_url
        self._client: Optional[httpx.AsyncClient] = None
        self.logger = logger.bind(component="http_client")

    async def open(self) -> None:
        """Create the underlying httpx client if it does not exist yet."""
        if self._client is not None:
            return

        limits = httpx.Limits(
            max_connections=self.http_config.max_connections,
            max_keepalive_connections=self.http_config.max_keepalive_connections,
        )
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(float(self.retry_config.timeout)),
            limits=limits,
            follow_redirects=True,
            max_redirects=self.http_config.max_redirects,
            verify=self.http_config.verify_ssl,
        )
        self.logger.info(
            "http_client_initialized",
            base_url=self.base_url,
            timeout=self.retry_config.timeout,
            max_attempts=self.retry_config.retry,
        )

    async def aclose(self) -> None:
        """Close the underlying httpx client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            self.logger.info("http_client_closed")

    async def __aenter__(self) -> "AsyncHTTPClient":
        """Enter async context manager."""
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        await self.aclose()

    def _log_retry_attempt(self, retry_state: RetryCallState) -> None:
        """Log retry attempts with structured logging."""
        outcome = retry_state.outcome
        error = None
        if outcome is not None and outcome.failed:
            error = repr(outcome.exception())
        self.logger.warning(
            "http_retry_attempt",
            attempt=retry_state.attempt_number,
            seconds_since_start=round(retry_state.seconds_since_start, 2),
            error=error,
        )

    async def _make_request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Make an HTTP request with retry logic.

        Returns the final response even when its status is a retryable one
        (the attempts were exhausted); callers map the status themselves.

        Raises:
            httpx.RequestError: After exhausting attempts for network errors
        """
        await self.open()
        assert self._client is not None

        retry_status_codes = self.retry_config.retry_status_codes

        def should_retry_http_error(exception: BaseException) -> bool:
            if isinstance(exception, httpx.HTTPStatusError):
                return exception.response.status_code in retry_status_codes
            return False

        @retry(
            stop=stop_after_attempt(self.retry_config.retry),
            wait=wait_fixed(self.retry_config.retry_delay_ms / 1000.0),
            retry=(
                retry_if_exception_type(RETRYABLE_NETWORK_EXCEPTIONS)
                | retry_if_exception(should_retry_http_error)
            ),
            before_sleep=self._log_retry_attempt,
            reraise=True,
        )
        async def _request() -> httpx.Response:
            response = await self._client.request(method, url, **kwargs)

            if response.status_code in retry_status_codes:
                self.logger.warning(
                    "http_retryable_status",
                    method=method,
                    url=str(url),
                    status_code=response.status_code,
                )
                response.raise_for_status()

            return response

        try:
            return await _request()
        except httpx.HTTPStatusError as exc:
            return exc.response

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        """Make a GET request with automatic retry logic."""
        self.logger.debug("http_request", method="GET", url=str(url))
        return await self._make_request_with_retry("GET", url, **kwargs)

    async def post(
        self,
        url: str,
        json: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make a POST request with a JSON body and automatic retry logic."""
        self.logger.debug("http_request", method="POST", url=str(url))
        return await self._make_request_with_retry("POST", url, json=json, **kwargs)
