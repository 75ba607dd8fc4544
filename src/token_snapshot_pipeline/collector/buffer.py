"""In-memory snapshot buffer with size- and timer-triggered flushes."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from token_snapshot_pipeline.events import Clock, EventBus, EventType, now_utc
from token_snapshot_pipeline.scheduler import PeriodicTask
from token_snapshot_pipeline.storage.errors import SnapshotStoreError, StoreUnavailableError

if TYPE_CHECKING:
    from token_snapshot_pipeline.features.models import TokenSnapshot
    from token_snapshot_pipeline.storage.store import SnapshotStore

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100
DEFAULT_FLUSH_INTERVAL_SECONDS = 30.0


@dataclass
class BufferStats:
    """Counters for buffer activity."""

    flushes: int = 0
    snapshots_written: int = 0
    write_failures: int = 0
    flush_aborts: int = 0
    requeued: int = 0
    dropped: int = 0
    last_flush_at: datetime | None = None


class SnapshotBuffer:
    """Accumulates snapshots and writes them to the store in batches.

    A flush takes ownership of the pending list and replaces it with an
    empty one before writing, so snapshots added during a flush land in
    the fresh list. A failing item is logged and skipped; when the store is
    unreachable the unwritten remainder is put back at the front of the
    buffer, up to its capacity.

    Args:
        store: Destination of snapshots and training rows.
        capacity: Pending-item count that triggers a flush.
        flush_interval_seconds: Cadence of timer-driven flushes.
        bus: Receives ``buffer_flushed`` events.
        clock: Time source.
    """

    def __init__(
        self,
        store: SnapshotStore,
        *,
        capacity: int = DEFAULT_CAPACITY,
        flush_interval_seconds: float = DEFAULT_FLUSH_INTERVAL_SECONDS,
        bus: EventBus | None = None,
        clock: Clock = now_utc,
    ) -> None:
        self._store = store
        self._capacity = capacity
        self._bus = bus
        self._clock = clock
        self._items: list[TokenSnapshot] = []
        self._flush_lock = asyncio.Lock()
        self._pending_flushes: set[asyncio.Task[int]] = set()
        self._stats = BufferStats()
        self._timer = PeriodicTask(
            "snapshot-buffer-flush",
            self.flush,
            interval_seconds=flush_interval_seconds,
            initial_delay_seconds=flush_interval_seconds,
        )

    def __len__(self) -> int:
        return len(self._items)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def stats(self) -> BufferStats:
        return self._stats

    def pending(self) -> list[TokenSnapshot]:
        return list(self._items)

    async def start(self) -> None:
        await self._timer.start()

    async def stop(self) -> int:
        """Stop the timer, wait for running flushes and flush what is left."""
        await self._timer.stop()
        if self._pending_flushes:
            await asyncio.gather(*self._pending_flushes, return_exceptions=True)
        return await self.flush()

    def add(self, snapshot: TokenSnapshot) -> None:
        """Append a snapshot, scheduling a background flush when full.

        At most one background flush is pending at a time.
        """
        self._items.append(snapshot)
        if len(self._items) >= self._capacity and not self._pending_flushes:
            task = asyncio.create_task(self._background_flush())
            self._pending_flushes.add(task)
            task.add_done_callback(self._pending_flushes.discard)

    async def _background_flush(self) -> int:
        try:
            return await self.flush()
        except Exception as e:
            logger.error("Background buffer flush failed: %s", e)
            return 0

    async def flush(self) -> int:
        """Write every pending snapshot.

        Returns:
            Number of snapshots written.
        """
        async with self._flush_lock:
            if not self._items:
                return 0
            batch, self._items = self._items, []

            started = time.monotonic()
            written = 0
            for index, snapshot in enumerate(batch):
                try:
                    await self._store.save_snapshot(snapshot)
                    await self._save_training_row(snapshot)
                except StoreUnavailableError as e:
                    self._requeue(batch[index:])
                    self._stats.flush_aborts += 1
                    logger.error("Buffer flush aborted after %d/%d writes: %s", written, len(batch), e)
                    break
                except SnapshotStoreError as e:
                    self._stats.write_failures += 1
                    logger.warning("Failed to save snapshot for %s: %s", snapshot.symbol, e)
                    continue
                written += 1

            duration = time.monotonic() - started
            self._stats.flushes += 1
            self._stats.snapshots_written += written
            self._stats.last_flush_at = self._clock()
            logger.debug("Flushed %d/%d snapshots in %.3fs", written, len(batch), duration)

        if self._bus is not None:
            self._bus.emit(
                EventType.BUFFER_FLUSHED,
                count=written,
                attempted=len(batch),
                duration_seconds=duration,
            )
        return written

    async def _save_training_row(self, snapshot: TokenSnapshot) -> None:
        # A rejected training row does not fail the item.
        try:
            await self._store.save_training_row(snapshot)
        except StoreUnavailableError:
            raise
        except SnapshotStoreError as e:
            logger.warning("Failed to save training row for %s: %s", snapshot.symbol, e)

    def _requeue(self, unwritten: list[TokenSnapshot]) -> None:
        room = max(0, self._capacity - len(self._items))
        kept = unwritten[:room]
        self._items[:0] = kept
        self._stats.requeued += len(kept)
        dropped = len(unwritten) - len(kept)
        if dropped:
            self._stats.dropped += dropped
            logger.warning("Dropped %d snapshots that did not fit back into the buffer", dropped)

