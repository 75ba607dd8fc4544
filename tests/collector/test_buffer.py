"""Tests for the snapshot buffer."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from token_snapshot_pipeline.collector.buffer import SnapshotBuffer
from token_snapshot_pipeline.storage.errors import SnapshotStoreError, StoreUnavailableError
from token_snapshot_pipeline.storage.store import SqlSnapshotStore


@pytest.fixture
def mock_store() -> AsyncMock:
    store = AsyncMock()
    store.save_snapshot = AsyncMock()
    store.save_training_row = AsyncMock()
    return store


class TestFlush:
    """Batch writes."""

    @pytest.mark.asyncio
    async def test_flush_writes_snapshots_and_rows(
        self, store: SqlSnapshotStore, make_snapshot, bus, recorder, clock
    ) -> None:
        buffer = SnapshotBuffer(store, bus=bus, clock=clock)
        buffer.add(make_snapshot("MintA"))
        buffer.add(make_snapshot("MintB"))

        written = await buffer.flush()

        assert written == 2
        assert len(buffer) == 0
        assert buffer.stats.flushes == 1
        assert buffer.stats.snapshots_written == 2
        assert buffer.stats.last_flush_at == clock()
        assert await store.get_previous_snapshot("MintA") is not None
        assert len(await store.load_recent_feature_rows(limit=10)) == 2
        (event,) = recorder.of_type("buffer_flushed")
        assert event.payload["count"] == 2
        assert event.payload["attempted"] == 2

    @pytest.mark.asyncio
    async def test_empty_flush(self, mock_store: AsyncMock, bus, recorder) -> None:
        buffer = SnapshotBuffer(mock_store, bus=bus)

        assert await buffer.flush() == 0
        assert buffer.stats.flushes == 0
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_full_buffer_flushes_in_background(self, mock_store: AsyncMock, make_snapshot) -> None:
        buffer = SnapshotBuffer(mock_store, capacity=2)
        buffer.add(make_snapshot("MintA"))
        buffer.add(make_snapshot("MintB"))

        await buffer.stop()

        assert mock_store.save_snapshot.await_count == 2
        assert buffer.stats.flushes == 1
        assert len(buffer) == 0

    @pytest.mark.asyncio
    async def test_one_background_flush_at_a_time(self, mock_store: AsyncMock, make_snapshot) -> None:
        buffer = SnapshotBuffer(mock_store, capacity=2)
        for mint in ("A", "B", "C", "D", "E"):
            buffer.add(make_snapshot(mint))

        assert len(buffer._pending_flushes) == 1

        assert await buffer.stop() == 0
        assert mock_store.save_snapshot.await_count == 5
        assert buffer.stats.flushes == 1

    @pytest.mark.asyncio
    async def test_stop_flushes_remainder(self, mock_store: AsyncMock, make_snapshot) -> None:
        buffer = SnapshotBuffer(mock_store)
        buffer.add(make_snapshot())

        assert await buffer.stop() == 1


class TestFailures:
    """Item-level and store-level write failures."""

    @pytest.mark.asyncio
    async def test_failed_item_is_skipped(self, mock_store: AsyncMock, make_snapshot) -> None:
        mock_store.save_snapshot.side_effect = [None, SnapshotStoreError("bad row"), None]
        buffer = SnapshotBuffer(mock_store)
        for mint in ("A", "B", "C"):
            buffer.add(make_snapshot(mint))

        written = await buffer.flush()

        assert written == 2
        assert buffer.stats.write_failures == 1
        assert len(buffer) == 0
        assert mock_store.save_training_row.await_count == 2

    @pytest.mark.asyncio
    async def test_training_row_failure_keeps_snapshot(self, mock_store: AsyncMock, make_snapshot) -> None:
        mock_store.save_training_row.side_effect = SnapshotStoreError("duplicate")
        buffer = SnapshotBuffer(mock_store)
        buffer.add(make_snapshot())

        assert await buffer.flush() == 1
        assert buffer.stats.write_failures == 0

    @pytest.mark.asyncio
    async def test_unavailable_store_requeues_remainder(self, mock_store: AsyncMock, make_snapshot) -> None:
        mock_store.save_snapshot.side_effect = [None, StoreUnavailableError("down")]
        buffer = SnapshotBuffer(mock_store)
        first, second, third = (make_snapshot(mint) for mint in ("A", "B", "C"))
        for snapshot in (first, second, third):
            buffer.add(snapshot)

        written = await buffer.flush()

        assert written == 1
        assert buffer.pending() == [second, third]
        assert buffer.stats.flush_aborts == 1
        assert buffer.stats.requeued == 2

    @pytest.mark.asyncio
    async def test_unavailable_training_store_requeues(self, mock_store: AsyncMock, make_snapshot) -> None:
        mock_store.save_training_row.side_effect = StoreUnavailableError("down")
        buffer = SnapshotBuffer(mock_store)
        snapshot = make_snapshot()
        buffer.add(snapshot)

        assert await buffer.flush() == 0
        assert buffer.pending() == [snapshot]

    @pytest.mark.asyncio
    async def test_requeue_is_bounded_by_capacity(self, mock_store: AsyncMock, make_snapshot) -> None:
        """Snapshots added during a failing flush keep their place; overflow is dropped."""
        buffer = SnapshotBuffer(mock_store, capacity=3)
        first, second, late1, late2 = (make_snapshot(mint) for mint in ("A", "B", "C", "D"))

        def add_then_fail(snapshot):
            buffer.add(late1)
            buffer.add(late2)
            raise StoreUnavailableError("down")

        mock_store.save_snapshot.side_effect = add_then_fail
        buffer.add(first)
        buffer.add(second)

        assert await buffer.flush() == 0
        assert buffer.pending() == [first, late1, late2]
        assert buffer.stats.requeued == 1
        assert buffer.stats.dropped == 1
