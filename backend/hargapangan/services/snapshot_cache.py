"""TTL cache for upstream price snapshots served by the passthrough endpoints"""
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    value: V
    stored_at: float


class SnapshotCache(Generic[V]):
    """
    Keyed cache with a fixed TTL and explicit invalidation.

    Expired entries are kept so callers can fall back to stale data when
    the upstream is down (see get_stale).
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry[V]] = {}

    def _is_fresh(self, entry: CacheEntry[V]) -> bool:
        return (self._clock() - entry.stored_at) < self.ttl_seconds

    def get(self, key: Hashable) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None or not self._is_fresh(entry):
            return None
        return entry.value

    def get_stale(self, key: Hashable) -> Optional[V]:
        entry = self._entries.get(key)
        return entry.value if entry else None

    def age_seconds(self, key: Hashable) -> Optional[float]:
        entry = self._entries.get(key)
        return self._clock() - entry.stored_at if entry else None

    def put(self, key: Hashable, value: V) -> None:
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock())

    def invalidate(self, key: Optional[Hashable] = None) -> int:
        """Drop one key, or everything when key is None. Returns entries removed."""
        if key is None:
            removed = len(self._entries)
            self._entries.clear()
            return removed
        return 1 if self._entries.pop(key, None) is not None else 0

    def status(self) -> dict:
        return {
            "ttl_seconds": self.ttl_seconds,
            "entries": [
                {
                    "key": str(key),
                    "age_seconds": round(self._clock() - entry.stored_at, 1),
                    "is_expired": not self._is_fresh(entry),
                    "records": len(entry.value) if hasattr(entry.value, "__len__") else None,
                }
                for key, entry in self._entries.items()
            ],
        }
