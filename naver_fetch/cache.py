import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """
    In-memory result cache with a fixed time-to-live per entry.

    - Entries expire `ttl_ms` after they were last set
    - Bounded to `max_entries`; when full, the oldest-inserted entry is
      evicted (FIFO by insertion, not LRU - reads do not refresh order)
    - Expired entries are removed lazily on get()

    Not thread-safe. Meant for a single asyncio event loop, where get/set
    never suspend.
    """

    def __init__(self, ttl_ms: float, max_entries: int = 1000, clock: Callable[[], float] = time.monotonic):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl_s = ttl_ms / 1000.0
        self.max_entries = max_entries
        self._clock = clock
        self._store: dict[Hashable, CacheEntry] = {}

    def get(self, key: Hashable) -> Any | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._store[key]
            return None
        return entry.value

    def set(self, key: Hashable, value: Any) -> None:
        # re-setting a key moves it to the newest insertion slot
        self._store.pop(key, None)
        if len(self._store) >= self.max_entries:
            oldest = next(iter(self._store))
            del self._store[oldest]
        self._store[key] = CacheEntry(value=value, expires_at=self._clock() + self.ttl_s)

    def clear(self) -> None:
        self._store.clear()

    def __contains__(self, key: Hashable) -> bool:
        entry = self._store.get(key)
        return entry is not None and self._clock() < entry.expires_at

    def __len__(self) -> int:
        return len(self._store)
