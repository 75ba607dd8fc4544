"""Pytest configuration and fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from token_snapshot_pipeline.events import EventBus, PipelineEvent
from token_snapshot_pipeline.features.extractor import FeatureExtractor
from token_snapshot_pipeline.features.models import TokenSnapshot
from token_snapshot_pipeline.storage.database import DatabaseManager
from token_snapshot_pipeline.storage.models import Base
from token_snapshot_pipeline.storage.store import SqlSnapshotStore

SAMPLE_MINT = "So1anaMint1111111111111111111111111111111111"
START_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock; calling it returns the current fake time."""

    def __init__(self, start: datetime = START_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0.0, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, **kwargs)
        return self.now


class EventRecorder:
    """Collects every event published on a bus."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[PipelineEvent] = []
        bus.subscribe(self.events.append)

    def types(self) -> list[str]:
        return [e.type.value for e in self.events]

    def of_type(self, value: str) -> list[PipelineEvent]:
        return [e for e in self.events if e.type.value == value]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    return EventRecorder(bus)


@pytest.fixture
def sample_mint() -> str:
    """Sample token mint for testing."""
    return SAMPLE_MINT


@pytest.fixture
async def async_engine():
    """Create an in-memory async SQLite engine with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def db_manager(async_engine) -> DatabaseManager:
    return DatabaseManager("sqlite+aiosqlite:///:memory:", engine=async_engine)


@pytest.fixture
def store(db_manager: DatabaseManager) -> SqlSnapshotStore:
    return SqlSnapshotStore(db_manager)


@pytest.fixture
def gmgn_payload() -> dict[str, Any]:
    """A GMGN token payload (already unwrapped from data.token)."""
    return {
        "price": 0.0042,
        "liquidity": 52_000,
        "holderCount": 1_250,
        "top10Percent": 32.5,
        "volume1h": 8_000,
        "volume24h": 96_000,
        "priceChange5m": 2.0,
        "priceChange1h": 12.0,
        "priceChange24h": 40.0,
        "buys1h": 120,
        "sells1h": 80,
        "lpBurnedPercent": 100,
        "mintRevoked": True,
        "freezeRevoked": True,
        "createdAt": int((START_TIME - timedelta(hours=6)).timestamp()),
    }


@pytest.fixture
def dex_payload() -> dict[str, Any]:
    """A DexScreener pair payload."""
    return {
        "chainId": "solana",
        "pairAddress": "PairAddr111",
        "baseToken": {"address": SAMPLE_MINT, "name": "Sample", "symbol": "SMPL"},
        "priceUsd": "0.0041",
        "liquidity": {"usd": 50_000},
        "volume": {"m5": 500, "h1": 7_500, "h24": 90_000},
        "priceChange": {"m5": 1.5, "h1": 11.0, "h24": 38.0},
        "txns": {"m5": {"buys": 10, "sells": 6}, "h1": {"buys": 110, "sells": 75}},
        "pairCreatedAt": int((START_TIME - timedelta(hours=6)).timestamp() * 1000),
        "info": {
            "socials": [{"type": "twitter", "url": "https://x.com/sample"}],
            "websites": [{"url": "https://sample.example"}],
        },
    }


@pytest.fixture
def make_snapshot(clock: FakeClock, gmgn_payload: dict[str, Any], dex_payload: dict[str, Any]):
    """Factory for fully featurized snapshots at the current fake time."""
    extractor = FeatureExtractor(clock=clock)

    def _make(mint: str = SAMPLE_MINT, symbol: str = "SMPL", **gmgn_overrides: Any) -> TokenSnapshot:
        snapshot = extractor.create_snapshot(
            mint,
            symbol,
            dex_data=dex_payload,
            gmgn_data={**gmgn_payload, **gmgn_overrides},
        )
        assert snapshot is not None
        return snapshot

    return _make
