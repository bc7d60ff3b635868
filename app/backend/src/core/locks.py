"""In-process per-job write locks."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager

import structlog

from .exceptions import ConcurrentModification

LOGGER = structlog.get_logger(__name__)


class JobLockRegistry:
    """Hands out one exclusive lock per job identifier.

    Multi-job operations must go through :meth:`hold`, which always acquires
    in ascending identifier order so two writers touching the same pair of
    jobs cannot deadlock. Acquisition is bounded by ``timeout`` seconds; a
    writer that cannot get the lock in time fails with
    :class:`ConcurrentModification`.
    """

    def __init__(self, timeout: float = 5.0) -> None:
        self._timeout = timeout
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, job_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = self._locks[job_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, *job_ids: str) -> Iterator[tuple[str, ...]]:
        ordered = tuple(sorted(set(job_ids)))
        with ExitStack() as stack:
            for job_id in ordered:
                lock = self._lock_for(job_id)
                if not lock.acquire(timeout=self._timeout):
                    LOGGER.warning("job_lock_timeout", job_id=job_id, timeout=self._timeout)
                    raise ConcurrentModification(job_id, None, None)
                stack.callback(lock.release)
            yield ordered


__all__ = ["JobLockRegistry"]
