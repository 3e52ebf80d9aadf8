"""Process-local attempt store.

Tracks AttemptRecords per identity key in lock-striped shards: every key maps
to one shard, and each shard's dict is only touched under that shard's lock.
Read-modify-write on a key is therefore serialized, while unrelated keys
rarely contend.

Each process has its own counters, so this store is only correct for a single
instance (and for tests). Multi-instance deployments use SqlAttemptStore.
"""
import threading
import zlib
from typing import Callable, Dict, Optional, Tuple, TypeVar

from loginguard.domain.attempt import AttemptRecord
from loginguard.domain.policy import RateLimitPolicy

T = TypeVar("T")

DEFAULT_SHARDS = 64


class InMemoryAttemptStore:
    """Thread-safe in-memory AttemptRecord storage."""

    kind = "memory"

    def __init__(self, policy: RateLimitPolicy, shards: int = DEFAULT_SHARDS):
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._policy = policy
        self._locks = [threading.Lock() for _ in range(shards)]
        self._shards: list[Dict[str, AttemptRecord]] = [{} for _ in range(shards)]

    def _index(self, key: str) -> int:
        return zlib.crc32(key.encode("utf-8")) % len(self._shards)

    def get(self, key: str) -> Optional[AttemptRecord]:
        i = self._index(key)
        with self._locks[i]:
            return self._shards[i].get(key)

    def set(self, key: str, record: AttemptRecord) -> None:
        i = self._index(key)
        with self._locks[i]:
            self._shards[i][key] = record

    def delete(self, key: str) -> None:
        i = self._index(key)
        with self._locks[i]:
            self._shards[i].pop(key, None)

    def update(
        self,
        key: str,
        fn: Callable[[Optional[AttemptRecord]], Tuple[Optional[AttemptRecord], T]],
    ) -> T:
        """Atomically apply ``fn`` to the record stored under ``key``.

        ``fn`` receives the current record (or None) and returns
        ``(new_record, result)``. A None record deletes the key. Returns
        ``result``.
        """
        i = self._index(key)
        with self._locks[i]:
            shard = self._shards[i]
            new_record, result = fn(shard.get(key))
            if new_record is None:
                shard.pop(key, None)
            else:
                shard[key] = new_record
            return result

    def sweep(self, now: int) -> None:
        """Drop every logically expired record, one shard at a time."""
        for lock, shard in zip(self._locks, self._shards):
            with lock:
                stale = [k for k, rec in shard.items() if rec.is_expired(now, self._policy)]
                for k in stale:
                    del shard[k]

    def __len__(self) -> int:
        total = 0
        for lock, shard in zip(self._locks, self._shards):
            with lock:
                total += len(shard)
        return total
