"""GMGN quotation API client."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from token_snapshot_pipeline.ingestor.provider import HttpProvider, ProviderError, RawPairData

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://gmgn.ai/defi/quotation/v1"


def unwrap_token(payload: Any) -> RawPairData | None:
    """Extract ``data.token`` from a GMGN response envelope."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if not isinstance(data, dict):
        return None
    token = data.get("token")
    return token if isinstance(token, dict) and token else None


class GmgnClient(HttpProvider):
    """Fetches real-time token data from GMGN.

    GMGN has no batch endpoint, so ``get_multiple`` fans out single-token
    requests; the shared rate limiter keeps them spaced.
    """

    name = "gmgn"

    def __init__(self, base_url: str = DEFAULT_BASE_URL, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)

    async def get_pair_data(self, mint: str) -> RawPairData | None:
        payload = await self._get_json(f"tokens/sol/{mint}")
        return unwrap_token(payload)

    async def get_multiple(self, mints: Sequence[str]) -> dict[str, RawPairData]:
        unique = list(dict.fromkeys(mints))
        results = await asyncio.gather(
            *(self.get_pair_data(mint) for mint in unique),
            return_exceptions=True,
        )
        found: dict[str, RawPairData] = {}
        for mint, result in zip(unique, results, strict=True):
            if isinstance(result, ProviderError):
                logger.warning("GMGN fetch failed for %s: %s", mint, result)
            elif isinstance(result, BaseException):
                raise result
            elif result is not None:
                found[mint] = result
        return found
