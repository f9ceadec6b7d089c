"""
Base API client with optional retries and request metrics.
"""
import time
from typing import Any, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from iss_ingest.config import Settings, get_settings
from iss_ingest.errors import UpstreamError

logger = structlog.get_logger()


def _is_transient(exc: BaseException) -> bool:
    """Transport failures and 5xx responses are worth retrying; 4xx are not."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


class BaseAPIClient:
    """
    Async HTTP client wrapper.
    Provides connection lifecycle, retries on transient errors and metrics.
    """

    BASE_URL: str = ""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        self._timeout = self._settings.api_timeout_seconds
        self._max_attempts = self._settings.retry_max_attempts

        # Metrics
        self._request_count = 0
        self._error_count = 0
        self._bytes_transferred = 0
        self._total_latency_ms = 0.0

    def _get_headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    async def __aenter__(self) -> "BaseAPIClient":
        await self.connect()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def connect(self) -> None:
        """Initialize the HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self.BASE_URL,
            timeout=httpx.Timeout(self._timeout),
            headers=self._get_headers(),
            transport=self._transport,
        )
        logger.info("API client connected", base_url=self.BASE_URL)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info(
                "API client closed",
                requests_made=self._request_count,
                errors=self._error_count,
            )

    async def _make_request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make a single HTTP request. Raises on any non-2xx status."""
        if not self._client:
            raise RuntimeError("Client not connected. Call connect() first.")

        log = logger.bind(method=method, path=path, params=params)
        start = time.monotonic()

        try:
            response = await self._client.request(method, path, params=params)
            elapsed_ms = (time.monotonic() - start) * 1000
            self._request_count += 1
            self._total_latency_ms += elapsed_ms
            if response.content:
                self._bytes_transferred += len(response.content)

            log.debug(
                "API request completed",
                status=response.status_code,
                latency_ms=round(elapsed_ms, 2),
            )
            response.raise_for_status()
            return response

        except httpx.HTTPError as e:
            self._error_count += 1
            log.warning("API request failed", error=str(e))
            raise

    async def get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        """
        GET with retries on transient errors.
        Returns parsed JSON response.

        Raises:
            UpstreamError: request failed after all attempts, or body is not JSON.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential_jitter(
                initial=self._settings.backoff_base_seconds,
                max=self._settings.backoff_max_seconds,
            ),
            reraise=True,
        )
        try:
            response = await retrying(self._make_request, "GET", path, params=params)
        except httpx.HTTPError as e:
            raise UpstreamError(f"GET failed: {e}", path=path, params=params) from e

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError("Response body is not JSON", path=path, params=params) from e

    def get_metrics(self) -> dict[str, Any]:
        """Get client metrics."""
        avg_latency = (
            self._total_latency_ms / self._request_count
            if self._request_count > 0
            else 0
        )
        return {
            "requests": self._request_count,
            "errors": self._error_count,
            "bytes_transferred": self._bytes_transferred,
            "avg_latency_ms": round(avg_latency, 2),
        }
