"""Tests for the DexScreener and GMGN clients."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from token_snapshot_pipeline.ingestor.dexscreener import (
    MAX_TOKENS_PER_REQUEST,
    DexScreenerClient,
    select_best_pair,
)
from token_snapshot_pipeline.ingestor.gmgn import GmgnClient, unwrap_token
from token_snapshot_pipeline.ingestor.provider import (
    MarketDataProvider,
    ProviderError,
    ProviderTransientError,
    RetryError,
    with_retry,
)

FAST = {"requests_per_second": 1000.0, "retry_base_delay": 0.0}


def _pair(mint: str, liquidity: float, chain: str = "solana") -> dict[str, Any]:
    return {
        "chainId": chain,
        "pairAddress": f"{mint}-{liquidity}",
        "baseToken": {"address": mint, "symbol": mint[:4]},
        "priceUsd": "1.0",
        "liquidity": {"usd": liquidity},
    }


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestWithRetry:
    """Tests for the retry decorator."""

    @pytest.mark.asyncio
    async def test_success_after_retries(self) -> None:
        """Transient failures are retried until success."""
        calls = 0

        @with_retry(max_retries=3, base_delay=0.0)
        async def flaky() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ProviderTransientError("not yet")
            return "ok"

        assert await flaky() == "ok"
        assert calls == 3

    @pytest.mark.asyncio
    async def test_exhausted(self) -> None:
        @with_retry(max_retries=2, base_delay=0.0)
        async def always_fails() -> None:
            raise ProviderTransientError("down")

        with pytest.raises(RetryError) as exc_info:
            await always_fails()

        assert "3 attempts" in str(exc_info.value)
        assert isinstance(exc_info.value.last_exception, ProviderTransientError)

    @pytest.mark.asyncio
    async def test_non_retryable_propagates(self) -> None:
        calls = 0

        @with_retry(max_retries=3, base_delay=0.0)
        async def broken() -> None:
            nonlocal calls
            calls += 1
            raise ProviderError("bad request")

        with pytest.raises(ProviderError):
            await broken()
        assert calls == 1


class TestSelectBestPair:
    """Tests for DexScreener pair selection."""

    def test_highest_liquidity_solana_pair(self) -> None:
        pairs = [_pair("A", 100), _pair("A", 5_000), _pair("A", 1_000_000, chain="ethereum")]
        assert select_best_pair(pairs)["liquidity"]["usd"] == 5_000

    def test_filters_by_mint(self) -> None:
        pairs = [_pair("A", 100), _pair("B", 9_000)]
        assert select_best_pair(pairs, "A")["baseToken"]["address"] == "A"
        assert select_best_pair(pairs, "C") is None

    def test_missing_liquidity_counts_as_zero(self) -> None:
        bare = {"chainId": "solana", "baseToken": {"address": "A"}}
        assert select_best_pair([bare, _pair("A", 1)])["liquidity"]["usd"] == 1


class TestDexScreenerClient:
    """Tests for DexScreenerClient against a mock transport."""

    @pytest.mark.asyncio
    async def test_get_pair_data(self, dex_payload, sample_mint) -> None:
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.path)
            return httpx.Response(200, json={"pairs": [dex_payload, _pair(sample_mint, 10)]})

        async with DexScreenerClient("https://dex.test/latest/dex", client=_client(handler), **FAST) as dex:
            pair = await dex.get_pair_data(sample_mint)

        assert pair == dex_payload
        assert requested == [f"/latest/dex/tokens/{sample_mint}"]

    @pytest.mark.asyncio
    async def test_not_found_is_none(self, sample_mint) -> None:
        client = _client(lambda request: httpx.Response(404))
        dex = DexScreenerClient("https://dex.test", client=client, **FAST)
        assert await dex.get_pair_data(sample_mint) is None

    @pytest.mark.asyncio
    async def test_null_pairs_is_none(self, sample_mint) -> None:
        client = _client(lambda request: httpx.Response(200, json={"pairs": None}))
        dex = DexScreenerClient("https://dex.test", client=client, **FAST)
        assert await dex.get_pair_data(sample_mint) is None

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self, sample_mint) -> None:
        statuses = iter([503, 429, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            status = next(statuses)
            if status != 200:
                return httpx.Response(status)
            return httpx.Response(200, json={"pairs": [_pair(sample_mint, 50)]})

        dex = DexScreenerClient("https://dex.test", client=_client(handler), max_retries=3, **FAST)
        pair = await dex.get_pair_data(sample_mint)
        assert pair is not None

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, sample_mint) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(400)

        dex = DexScreenerClient("https://dex.test", client=_client(handler), **FAST)
        with pytest.raises(ProviderError):
            await dex.get_pair_data(sample_mint)
        assert calls == 1

    @pytest.mark.asyncio
    async def test_network_error_exhausts_retries(self, sample_mint) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        dex = DexScreenerClient("https://dex.test", client=_client(handler), max_retries=1, **FAST)
        with pytest.raises(RetryError):
            await dex.get_pair_data(sample_mint)

    @pytest.mark.asyncio
    async def test_invalid_json(self, sample_mint) -> None:
        client = _client(lambda request: httpx.Response(200, content=b"<html>"))
        dex = DexScreenerClient("https://dex.test", client=client, **FAST)
        with pytest.raises(ProviderError, match="invalid JSON"):
            await dex.get_pair_data(sample_mint)

    @pytest.mark.asyncio
    async def test_get_multiple_chunks(self) -> None:
        mints = [f"mint{i:03d}" for i in range(MAX_TOKENS_PER_REQUEST + 5)]
        batches: list[list[str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            chunk = request.url.path.rsplit("/", 1)[-1].split(",")
            batches.append(chunk)
            return httpx.Response(200, json={"pairs": [_pair(m, 100) for m in chunk if m != "mint000"]})

        dex = DexScreenerClient("https://dex.test", client=_client(handler), **FAST)
        result = await dex.get_multiple(mints + ["mint001"])

        assert [len(b) for b in batches] == [MAX_TOKENS_PER_REQUEST, 5]
        assert len(result) == len(mints) - 1
        assert "mint000" not in result

    def test_satisfies_provider_protocol(self) -> None:
        dex = DexScreenerClient("https://dex.test", client=_client(lambda r: httpx.Response(404)))
        assert isinstance(dex, MarketDataProvider)


class TestGmgnClient:
    """Tests for GmgnClient against a mock transport."""

    def test_unwrap_token(self, gmgn_payload) -> None:
        assert unwrap_token({"code": 0, "data": {"token": gmgn_payload}}) == gmgn_payload
        assert unwrap_token({"data": {"token": {}}}) is None
        assert unwrap_token({"data": None}) is None
        assert unwrap_token([]) is None

    @pytest.mark.asyncio
    async def test_get_pair_data(self, gmgn_payload, sample_mint) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == f"/defi/quotation/v1/tokens/sol/{sample_mint}"
            return httpx.Response(200, json={"code": 0, "data": {"token": gmgn_payload}})

        gmgn = GmgnClient("https://gmgn.test/defi/quotation/v1", client=_client(handler), **FAST)
        assert await gmgn.get_pair_data(sample_mint) == gmgn_payload

    @pytest.mark.asyncio
    async def test_get_multiple_skips_failures(self, gmgn_payload) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            mint = request.url.path.rsplit("/", 1)[-1]
            if mint == "missing":
                return httpx.Response(404)
            if mint == "broken":
                return httpx.Response(403)
            return httpx.Response(200, json={"data": {"token": gmgn_payload}})

        gmgn = GmgnClient("https://gmgn.test", client=_client(handler), **FAST)
        result = await gmgn.get_multiple(["good", "missing", "broken", "good"])

        assert list(result) == ["good"]

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self) -> None:
        client = _client(lambda request: httpx.Response(404))
        gmgn = GmgnClient("https://gmgn.test", client=client, **FAST)
        await gmgn.aclose()
        assert not client.is_closed
        await client.aclose()
