"""Market-data provider contract and the shared httpx client base.

Providers must be safe to call concurrently and must not raise for a
single unknown token: a 404 or an empty payload yields ``None``.
Transient failures (HTTP 429/5xx, timeouts, connection errors) are
retried with exponential backoff before surfacing as ``RetryError``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from functools import wraps
from types import TracebackType
from typing import Any, ParamSpec, Protocol, TypeVar, runtime_checkable

import httpx

from token_snapshot_pipeline.ingestor.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 0.5
DEFAULT_REQUESTS_PER_SECOND = 5.0
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)

RawPairData = dict[str, Any]


@runtime_checkable
class MarketDataProvider(Protocol):
    """Source of raw per-token market data."""

    name: str

    async def get_pair_data(self, mint: str) -> RawPairData | None: ...

    async def get_multiple(self, mints: Sequence[str]) -> dict[str, RawPairData]: ...


class ProviderError(Exception):
    """Base exception for market-data provider errors."""


class ProviderNotFoundError(ProviderError):
    """Raised internally when a token is unknown upstream (404)."""


class ProviderTransientError(ProviderError):
    """Raised for retryable failures (429/5xx, timeouts, network issues)."""


class RetryError(ProviderError):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception | None = None) -> None:
        super().__init__(message)
        self.last_exception = last_exception


def with_retry(
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    retry_on: tuple[type[Exception], ...] = (ProviderTransientError,),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator adding retry with exponential backoff to a coroutine function.

    Args:
        max_retries: Maximum number of retry attempts.
        base_delay: Base delay in seconds (doubles with each retry).
        retry_on: Tuple of exception types to retry on.

    Returns:
        Decorated coroutine function with retry logic.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    last_exception = e
                    if attempt == max_retries:
                        break

                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                        attempt + 1,
                        max_retries + 1,
                        str(e),
                        delay,
                    )
                    await asyncio.sleep(delay)

            raise RetryError(
                f"All {max_retries + 1} attempts failed for {func.__name__}",
                last_exception=last_exception,
            )

        return wrapper

    return decorator


class HttpProvider:
    """Base class for JSON-over-HTTP market-data providers.

    Subclasses implement ``get_pair_data`` / ``get_multiple`` on top of
    ``_get_json``, which applies request spacing, status classification
    and retries.
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND,
        client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize the provider client.

        Args:
            base_url: API root; request paths are joined onto it.
            timeout_seconds: Per-request timeout.
            max_retries: Retry attempts for transient failures.
            retry_base_delay: First backoff delay in seconds.
            requests_per_second: Request spacing for this provider.
            client: Pre-built client (tests inject one with a MockTransport).
            headers: Extra request headers.
        """
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout_seconds,
            headers={"Accept": "application/json", **(headers or {})},
        )
        self._rate_limiter = RateLimiter(requests_per_second)
        self._get_json_with_retry = with_retry(
            max_retries=max_retries,
            base_delay=retry_base_delay,
        )(self._get_json_once)

        logger.info(
            "Initialized %s provider with base_url=%s, rate_limit=%.1f req/s",
            self.name,
            self._base_url,
            requests_per_second,
        )

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    async def _get_json_once(self, path: str) -> Any:
        await self._rate_limiter.acquire()
        try:
            response = await self._client.get(self._url(path))
        except httpx.TimeoutException as e:
            raise ProviderTransientError(f"{self.name} timeout for {path}: {e}") from e
        except httpx.TransportError as e:
            raise ProviderTransientError(f"{self.name} network error for {path}: {e}") from e

        if response.status_code == 404:
            raise ProviderNotFoundError(f"{self.name} has no data for {path}")
        if response.status_code in RETRY_STATUS_CODES:
            raise ProviderTransientError(f"{self.name} returned HTTP {response.status_code} for {path}")
        if response.status_code >= 400:
            raise ProviderError(f"{self.name} returned HTTP {response.status_code} for {path}")

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"{self.name} returned invalid JSON for {path}: {e}") from e

    async def _get_json(self, path: str) -> Any:
        """GET ``path`` and decode JSON; None when the resource does not exist."""
        try:
            return await self._get_json_with_retry(path)
        except ProviderNotFoundError:
            return None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpProvider:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
