"""DexScreener REST client."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from token_snapshot_pipeline.ingestor.provider import HttpProvider, RawPairData

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.dexscreener.com/latest/dex"
CHAIN_ID = "solana"
MAX_TOKENS_PER_REQUEST = 30


def _liquidity_usd(pair: dict[str, Any]) -> float:
    liquidity = pair.get("liquidity") or {}
    try:
        return float(liquidity.get("usd") or 0)
    except (TypeError, ValueError):
        return 0.0


def select_best_pair(pairs: Iterable[dict[str, Any]], mint: str | None = None) -> RawPairData | None:
    """Pick the Solana pair with the highest USD liquidity.

    Args:
        pairs: Pairs as returned by the tokens endpoint.
        mint: When given, only pairs whose base token is this mint qualify.
    """
    best: RawPairData | None = None
    for pair in pairs:
        if not isinstance(pair, dict) or pair.get("chainId") != CHAIN_ID:
            continue
        if mint is not None and (pair.get("baseToken") or {}).get("address") != mint:
            continue
        if best is None or _liquidity_usd(pair) > _liquidity_usd(best):
            best = pair
    return best


class DexScreenerClient(HttpProvider):
    """Fetches pair data for Solana tokens from DexScreener.

    Example:
        ```python
        async with DexScreenerClient() as dex:
            pair = await dex.get_pair_data("So11111111111111111111111111111111111111112")
        ```
    """

    name = "dexscreener"

    def __init__(self, base_url: str = DEFAULT_BASE_URL, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)

    async def _fetch_pairs(self, mints: Sequence[str]) -> list[dict[str, Any]]:
        payload = await self._get_json(f"tokens/{','.join(mints)}")
        if not isinstance(payload, dict):
            return []
        return [p for p in payload.get("pairs") or [] if isinstance(p, dict)]

    async def get_pair_data(self, mint: str) -> RawPairData | None:
        """Best Solana pair for ``mint``, or None when DexScreener has none."""
        pairs = await self._fetch_pairs([mint])
        return select_best_pair(pairs)

    async def get_multiple(self, mints: Sequence[str]) -> dict[str, RawPairData]:
        """Best pair per mint, chunked to the endpoint's batch limit.

        Mints without any Solana pair are simply absent from the result.
        """
        result: dict[str, RawPairData] = {}
        unique = list(dict.fromkeys(mints))
        for start in range(0, len(unique), MAX_TOKENS_PER_REQUEST):
            chunk = unique[start : start + MAX_TOKENS_PER_REQUEST]
            pairs = await self._fetch_pairs(chunk)
            for mint in chunk:
                best = select_best_pair(pairs, mint)
                if best is not None:
                    result[mint] = best
        logger.debug("DexScreener returned pairs for %d/%d tokens", len(result), len(unique))
        return result
