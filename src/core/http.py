"""Outbound HTTP helpers with timeouts, retry logic, and token caching."""

import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

# Retry configuration
MIN_WAIT_SECONDS = 1
MAX_WAIT_SECONDS = 10
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# Refresh cached OAuth tokens this long before the provider says they expire
TOKEN_EXPIRY_MARGIN_SECONDS = 300


class OutboundProviderError(Exception):
    """An outbound call to a carrier or payment provider failed.

    Raised after retries are exhausted or on a non-retryable error response.
    Compensating actions catch this per shipment/return and never let it
    fail an already-committed local transaction.
    """

    def __init__(
        self,
        provider: str,
        operation: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self.provider = provider
        self.operation = operation
        self.status_code = status_code
        super().__init__(f"{provider} {operation} failed: {message}")


class _RetryableResponse(Exception):
    """Internal signal that a response status should be retried."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        super().__init__(f"HTTP {response.status_code}")


@dataclass
class CachedToken:
    """An access token and the monotonic time after which it must be refreshed."""

    value: str
    refresh_after: float

    @classmethod
    def from_expires_in(cls, value: str, expires_in: int | float) -> "CachedToken":
        """Build a token that refreshes a safety margin before it expires."""
        lifetime = max(float(expires_in) - TOKEN_EXPIRY_MARGIN_SECONDS, 0.0)
        return cls(value=value, refresh_after=time.monotonic() + lifetime)

    @property
    def is_valid(self) -> bool:
        return time.monotonic() < self.refresh_after


def build_async_client(base_url: str, timeout_seconds: float) -> httpx.AsyncClient:
    """Create an AsyncClient for one provider.

    Args:
        base_url: Provider API base URL.
        timeout_seconds: Timeout applied to connect, read, and write.

    Returns:
        httpx.AsyncClient: Client with JSON accept header.
    """
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=httpx.Timeout(timeout_seconds),
        headers={"Accept": "application/json"},
    )


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    operation: str,
    max_retries: int = 3,
    **kwargs: Any,
) -> dict[str, Any]:
    """Send a request and decode the JSON body, retrying transient failures.

    Transport errors and 429/5xx responses are retried with exponential
    backoff. Any other error response fails immediately.

    Args:
        client: Provider HTTP client.
        method: HTTP method.
        url: Path relative to the client's base URL, or absolute URL.
        provider: Provider name for errors and logs.
        operation: Operation name for errors and logs.
        max_retries: Retries after the first attempt.
        **kwargs: Passed through to httpx (json, data, headers, auth...).

    Returns:
        dict: Decoded JSON body, or an empty dict for an empty body.

    Raises:
        OutboundProviderError: If the call ultimately fails.
    """
    start_time = time.perf_counter()
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=MIN_WAIT_SECONDS, min=MIN_WAIT_SECONDS, max=MAX_WAIT_SECONDS),
        retry=retry_if_exception_type((httpx.TransportError, _RetryableResponse)),
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "Retrying %s %s (attempt %d)",
                        provider,
                        operation,
                        attempt.retry_state.attempt_number,
                    )
                response = await client.request(method, url, **kwargs)
                if response.status_code in RETRYABLE_STATUS_CODES:
                    raise _RetryableResponse(response)
    except _RetryableResponse as e:
        raise OutboundProviderError(
            provider, operation, "retries exhausted", status_code=e.response.status_code
        ) from e
    except httpx.HTTPError as e:
        raise OutboundProviderError(provider, operation, str(e) or type(e).__name__) from e

    latency_ms = (time.perf_counter() - start_time) * 1000
    if response.status_code >= 400:
        logger.error(
            "%s %s returned HTTP %d in %.2fms",
            provider,
            operation,
            response.status_code,
            latency_ms,
        )
        raise OutboundProviderError(
            provider, operation, f"HTTP {response.status_code}", status_code=response.status_code
        )

    logger.info("%s %s succeeded in %.2fms", provider, operation, latency_ms)
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError as e:
        raise OutboundProviderError(provider, operation, "response was not JSON") from e
