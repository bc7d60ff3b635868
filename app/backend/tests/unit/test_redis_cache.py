"""Tests for the Redis snapshot cache with an in-memory client."""

from __future__ import annotations

import os
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_workflow.db")
os.environ.setdefault("REDIS_ENABLED", "false")

from app.backend.src.core.redis_cache import RedisSnapshotCache, get_snapshot_cache


class DictRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def setex(self, key: str, ttl: int, value: str) -> None:
        self.values[key] = value
        self.ttls[key] = ttl


class BrokenRedis:
    def get(self, key: str) -> str | None:
        raise ConnectionError("redis down")

    def setex(self, key: str, ttl: int, value: str) -> None:
        raise ConnectionError("redis down")


def test_store_and_get_snapshot() -> None:
    client = DictRedis()
    cache = RedisSnapshotCache(client, ttl_seconds=30)

    assert cache.store("J-0001", {"id": "J-0001", "version": 2}) is True

    assert cache.get("J-0001") == {"id": "J-0001", "version": 2}
    assert client.ttls["job_snapshot:J-0001"] == 30


def test_older_snapshot_never_replaces_newer() -> None:
    cache = RedisSnapshotCache(DictRedis())
    cache.store("J-0001", {"id": "J-0001", "version": 3})

    assert cache.store("J-0001", {"id": "J-0001", "version": 2}) is False

    assert cache.get("J-0001")["version"] == 3


def test_redis_failures_degrade_to_miss() -> None:
    cache = RedisSnapshotCache(BrokenRedis())

    assert cache.get("J-0001") is None
    assert cache.store("J-0001", {"version": 1}) is False


def test_cache_disabled_without_redis() -> None:
    assert get_snapshot_cache() is None
