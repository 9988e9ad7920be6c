import hashlib
import threading
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from time import monotonic
from typing import Generic, TypeVar

from ledger_categorizer.domain.text import normalize_text

V = TypeVar("V")

DEFAULT_TTL_SECONDS = 1800.0


@dataclass
class CacheEntry(Generic[V]):
    key: str
    value: V
    timestamp: float


class LRUCache(Generic[V]):
    """Bounded least-recently-used cache with per-entry expiry.

    ``ttl_seconds=None`` keeps entries until evicted; a TTL of zero or less
    disables caching altogether. Expired entries are dropped when touched,
    or in bulk by :meth:`sweep`.
    """

    def __init__(
        self,
        capacity: int,
        ttl_seconds: float | None = DEFAULT_TTL_SECONDS,
        *,
        name: str = "cache",
        clock: Callable[[], float] = monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[V]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds is None or self.ttl_seconds > 0

    def _expired(self, entry: CacheEntry[V], now: float) -> bool:
        return self.ttl_seconds is not None and now - entry.timestamp >= self.ttl_seconds

    def get(self, key: str) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if self._expired(entry, self._clock()):
                del self._entries[key]
                self.expirations += 1
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return entry.value

    def set(self, key: str, value: V) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._entries[key] = CacheEntry(key=key, value=value, timestamp=self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)
                self.evictions += 1

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""
        if self.ttl_seconds is None:
            return 0
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
            for key in expired:
                del self._entries[key]
            self.expirations += len(expired)
            return len(expired)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries)

    def stats(self) -> dict[str, int | float | None]:
        with self._lock:
            return {
                "size": len(self._entries),
                "capacity": self.capacity,
                "ttl_seconds": self.ttl_seconds,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
                "expirations": self.expirations,
            }


def fingerprint(
    description: str,
    amount: Decimal,
    when: date | None,
    jurisdiction: str,
    user_id: str,
) -> str:
    """Deterministic cache key for one categorization request."""
    data = "|".join(
        (
            normalize_text(description),
            format(amount.normalize(), "f"),
            when.isoformat() if when else "",
            jurisdiction.upper(),
            user_id,
        )
    )
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
