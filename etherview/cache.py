"""TTL cache store shared by every resolver in the engine."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Mapping, Tuple

# Default expirations per artifact class, in seconds.
DEFAULT_TTLS: Dict[str, float] = {
    "balance": 30.0,
    "snapshot": 120.0,
    "transactions": 300.0,
    "price": 300.0,
    "price_long": 600.0,
    "fixed": 3600.0,
    "reference": 300.0,
}
DEFAULT_TTL = 60.0


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: Hashable
    value: Any
    expiry: float
    created_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expiry


class CacheStore:
    """Key/value store whose entries expire after a class-specific TTL.

    Eviction is lazy: an expired entry is dropped the next time it is read,
    there is no background sweeper.  ``maxsize`` bounds memory by discarding
    the least recently used entry.  Every operation takes the same lock so the
    store can be shared between concurrent resolution tasks (and threads).
    """

    def __init__(
        self,
        maxsize: int = 4096,
        ttls: Mapping[str, float] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.maxsize = max(1, int(maxsize))
        self.ttls: Dict[str, float] = dict(DEFAULT_TTLS)
        if ttls:
            self.ttls.update({k: float(v) for k, v in ttls.items()})
        self._clock = clock
        self._data: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._expired = 0

    # internal helpers -----------------------------------------------------
    def ttl_for(self, kind: str | None) -> float:
        if kind is None:
            return DEFAULT_TTL
        return self.ttls.get(kind, DEFAULT_TTL)

    def _evict(self) -> None:
        while len(self._data) > self.maxsize:
            self._data.popitem(last=False)

    # basic dict API -------------------------------------------------------
    def entry(self, key: Hashable) -> CacheEntry | None:
        """Return the live :class:`CacheEntry` for ``key`` or ``None``."""
        with self._lock:
            item = self._data.get(key)
            if item is None:
                self._misses += 1
                return None
            if not item.is_valid(self._clock()):
                del self._data[key]
                self._expired += 1
                self._misses += 1
                return None
            self._data.move_to_end(key)
            self._hits += 1
            return item

    def get(self, key: Hashable, default: Any = None) -> Any:
        item = self.entry(key)
        if item is None:
            return default
        return item.value

    def __contains__(self, key: Hashable) -> bool:  # pragma: no cover - trivial
        return self.entry(key) is not None

    def set(
        self,
        key: Hashable,
        value: Any,
        *,
        kind: str | None = None,
        ttl: float | None = None,
    ) -> CacheEntry:
        lifetime = float(ttl) if ttl is not None else self.ttl_for(kind)
        with self._lock:
            now = self._clock()
            item = CacheEntry(key=key, value=value, expiry=now + lifetime, created_at=now)
            self._data[key] = item
            self._data.move_to_end(key)
            self._evict()
            return item

    def invalidate(self, key: Hashable) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def invalidate_prefix(self, prefix: Tuple[Any, ...]) -> int:
        """Drop every tuple key starting with ``prefix``; return the count removed."""
        size = len(prefix)
        with self._lock:
            doomed = [
                key
                for key in self._data
                if isinstance(key, tuple) and key[:size] == prefix
            ]
            for key in doomed:
                del self._data[key]
        return len(doomed)

    def clear(self) -> None:  # pragma: no cover - trivial
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._data),
                "hits": self._hits,
                "misses": self._misses,
                "expired": self._expired,
            }


__all__ = ["DEFAULT_TTLS", "CacheEntry", "CacheStore"]
