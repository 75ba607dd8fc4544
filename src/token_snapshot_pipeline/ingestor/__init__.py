"""Ingestor - market-data providers, retries and rate limiting."""

from token_snapshot_pipeline.ingestor.dexscreener import DexScreenerClient, select_best_pair
from token_snapshot_pipeline.ingestor.gmgn import GmgnClient
from token_snapshot_pipeline.ingestor.provider import (
    HttpProvider,
    MarketDataProvider,
    ProviderError,
    ProviderNotFoundError,
    ProviderTransientError,
    RawPairData,
    RetryError,
    with_retry,
)
from token_snapshot_pipeline.ingestor.rate_limit import RateLimiter, SlidingWindowRateLimiter

__all__ = [
    "DexScreenerClient",
    "GmgnClient",
    "HttpProvider",
    "MarketDataProvider",
    "ProviderError",
    "ProviderNotFoundError",
    "ProviderTransientError",
    "RateLimiter",
    "RawPairData",
    "RetryError",
    "SlidingWindowRateLimiter",
    "select_best_pair",
    "with_retry",
]
