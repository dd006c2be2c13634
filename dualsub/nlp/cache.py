from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Hashable, Optional, Tuple

CacheKey = Tuple[str, str]  # (normalized source text, target language)


@dataclass(frozen=True)
class CacheEntry:
    value: str
    last_used_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0


class TranslationCache:
    """
    Bounded LRU store for translations, safe to share between threads.

    Entries are replaced, never mutated; a `put` for an existing key keeps the
    first value so a cached translation stays stable until it is evicted.
    """

    def __init__(self, max_entries: int = 1000, *, clock: Callable[[], float] = time.monotonic) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self.max_entries = int(max_entries)
        self._clock = clock
        self._entries: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self.stats = CacheStats()

    def get(self, key: CacheKey) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.stats.misses += 1
                return None
            self._entries.move_to_end(key)
            self._entries[key] = CacheEntry(value=entry.value, last_used_at=self._clock())
            self.stats.hits += 1
            return entry.value

    def put(self, key: CacheKey, value: str) -> None:
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None:
                self._entries.move_to_end(key)
                self._entries[key] = CacheEntry(value=existing.value, last_used_at=self._clock())
                return
            self._entries[key] = CacheEntry(value=str(value), last_used_at=self._clock())
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self.stats.evictions += 1

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
