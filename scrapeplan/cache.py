"""Small TTL cache with an injectable clock.

Owned by whichever component needs it (the workflow engine keeps finished
workflow records here for a bounded retention window).  Expired entries are
dropped lazily on access and on :meth:`TTLCache.purge`.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Hashable, Iterator, Optional, TypeVar

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    key: Hashable
    value: V
    inserted_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


class TTLCache(Generic[V]):
    """Mapping-like store whose entries vanish ``ttl`` seconds after insertion.

    Args:
        ttl: Default lifetime in seconds for new entries.
        clock: Zero-argument callable returning the current time in seconds.
            Defaults to :func:`time.monotonic`; tests pass a fake.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry[V]] = {}
        self._lock = threading.Lock()

    def set(self, key: Hashable, value: V, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                inserted_at=self._clock(),
                ttl=self.ttl if ttl is None else ttl,
            )

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if entry.expired(self._clock()):
                del self._entries[key]
                return default
            return entry.value

    def purge(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [k for k, e in self._entries.items() if e.expired(now)]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        self.purge()
        return len(self._entries)

    def __iter__(self) -> Iterator[Hashable]:
        self.purge()
        return iter(list(self._entries))


_MISSING = object()
