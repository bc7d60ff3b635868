"""Redis-backed read view of committed job snapshots.

The engine stores a job's snapshot after every successful commit and
``query_job`` serves it until the TTL lapses. Entries carry the job
``version`` so a late write can never replace a newer snapshot.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from redis import Redis

from .config import get_settings

LOGGER = structlog.get_logger(__name__)


class RedisSnapshotCache:
    """Job snapshots keyed by job id.

    Only committed state is written here, so readers never observe a change
    that was later rolled back. Any Redis failure degrades to a cache miss.
    """

    def __init__(
        self,
        client: Redis | None = None,
        *,
        key_prefix: str = "job_snapshot",
        ttl_seconds: int | None = None,
    ) -> None:
        settings = get_settings()
        self.client = client if client is not None else Redis.from_url(settings.redis_url)
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds or settings.snapshot_cache_ttl_seconds

    def _key(self, job_id: str) -> str:
        return f"{self.key_prefix}:{job_id}"

    def get(self, job_id: str) -> dict[str, Any] | None:
        key = self._key(job_id)
        try:
            raw = self.client.get(key)
        except Exception as exc:
            LOGGER.warning("snapshot_cache_read_failed", key=key, error=str(exc))
            return None
        return json.loads(raw) if raw else None

    def store(self, job_id: str, snapshot: dict[str, Any]) -> bool:
        """Cache ``snapshot`` unless a newer version is already stored."""

        cached = self.get(job_id)
        if cached is not None and cached.get("version", 0) > snapshot.get("version", 0):
            LOGGER.info(
                "snapshot_cache_write_skipped",
                job_id=job_id,
                cached_version=cached.get("version"),
                version=snapshot.get("version"),
            )
            return False
        key = self._key(job_id)
        try:
            self.client.setex(key, self.ttl_seconds, json.dumps(snapshot))
        except Exception as exc:
            LOGGER.warning("snapshot_cache_write_failed", key=key, error=str(exc))
            return False
        return True


def get_snapshot_cache() -> RedisSnapshotCache | None:
    """Return the snapshot cache when Redis is enabled."""

    if not get_settings().redis_enabled:
        return None
    return RedisSnapshotCache()


__all__ = ["RedisSnapshotCache", "get_snapshot_cache"]
