"""Redis-backed cache of the latest monitoring reports.

Out-of-process readers (dashboards, health probes) fetch the "last
computed" quality and drift reports, a bounded history of each, and the
collection heartbeat from here without touching the database.

Key layout (``prefix`` defaults to ``tsp:``):

- ``{prefix}quality:last`` / ``{prefix}drift:last``: JSON of the latest report
- ``{prefix}quality:history`` / ``{prefix}drift:history``: newest-first lists
- ``{prefix}collector:heartbeat``: hash with the last cycle summary
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from redis.asyncio import Redis

from token_snapshot_pipeline.monitoring.models import DataQualityReport, DriftReport

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "tsp:"
DEFAULT_QUALITY_HISTORY = 100
DEFAULT_DRIFT_HISTORY = 30


def _decode(raw: Any) -> str:
    return raw.decode() if isinstance(raw, bytes) else str(raw)


class ReportCache:
    """Publishes monitoring reports to Redis.

    Args:
        redis: Async Redis client.
        key_prefix: Namespace for every key written.
        quality_history: Number of quality reports kept in the history list.
        drift_history: Number of drift reports kept in the history list.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        quality_history: int = DEFAULT_QUALITY_HISTORY,
        drift_history: int = DEFAULT_DRIFT_HISTORY,
    ) -> None:
        self._redis = redis
        self._prefix = key_prefix
        self._quality_history = quality_history
        self._drift_history = drift_history

    def _key(self, suffix: str) -> str:
        return f"{self._prefix}{suffix}"

    async def _publish(self, kind: str, payload: dict[str, Any], keep: int) -> None:
        encoded = json.dumps(payload)
        history_key = self._key(f"{kind}:history")
        await self._redis.set(self._key(f"{kind}:last"), encoded)
        await self._redis.lpush(history_key, encoded)
        await self._redis.ltrim(history_key, 0, keep - 1)

    async def _last(self, kind: str) -> dict[str, Any] | None:
        raw = await self._redis.get(self._key(f"{kind}:last"))
        if raw is None:
            return None
        try:
            data: dict[str, Any] = json.loads(_decode(raw))
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable cached %s report", kind)
            return None
        return data

    async def _history(self, kind: str, limit: int) -> list[dict[str, Any]]:
        raws = await self._redis.lrange(self._key(f"{kind}:history"), 0, limit - 1)
        reports: list[dict[str, Any]] = []
        for raw in raws or []:
            try:
                reports.append(json.loads(_decode(raw)))
            except json.JSONDecodeError:
                continue
        return reports

    async def publish_quality(self, report: DataQualityReport) -> None:
        await self._publish("quality", report.to_dict(), self._quality_history)

    async def publish_drift(self, report: DriftReport) -> None:
        await self._publish("drift", report.to_dict(), self._drift_history)

    async def get_last_quality(self) -> dict[str, Any] | None:
        return await self._last("quality")

    async def get_last_drift(self) -> dict[str, Any] | None:
        return await self._last("drift")

    async def get_quality_history(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Return cached quality reports, newest first."""
        return await self._history("quality", limit or self._quality_history)

    async def get_drift_history(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Return cached drift reports, newest first."""
        return await self._history("drift", limit or self._drift_history)

    async def record_heartbeat(self, at: datetime, **fields: int | float | str) -> None:
        """Record that a collection cycle finished.

        Args:
            at: Completion time of the cycle.
            **fields: Cycle counters (collected, skipped, errors, ...).
        """
        mapping = {"at": at.isoformat(), **{k: str(v) for k, v in fields.items()}}
        await self._redis.hset(self._key("collector:heartbeat"), mapping=mapping)

    async def get_heartbeat(self) -> dict[str, str] | None:
        raw = await self._redis.hgetall(self._key("collector:heartbeat"))
        if not raw:
            return None
        return {_decode(k): _decode(v) for k, v in raw.items()}
