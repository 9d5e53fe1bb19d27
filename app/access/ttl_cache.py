from __future__ import annotations

from collections.abc import Callable, Hashable
from dataclasses import dataclass
from time import monotonic
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


def clamp_ttl_seconds(value: float) -> float:
    return max(1.0, float(value))


@dataclass(slots=True)
class _CacheEntry(Generic[V]):
    stored_at_mono: float
    value: V


class TtlCache(Generic[K, V]):
    """Process-local cache with a fixed time-to-live per entry.

    Entries are never refreshed in place; once older than the TTL they read as
    missing. When full, the oldest insertion is evicted first. ``None`` is not a
    storable value, so a ``None`` from ``get`` always means a miss.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float,
        max_entries: int = 10_000,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._ttl_seconds = clamp_ttl_seconds(ttl_seconds)
        self._max_entries = max(1, int(max_entries))
        self._clock = clock
        self._entries: dict[K, _CacheEntry[V]] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: K) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at_mono > self._ttl_seconds:
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, key: K, value: V) -> None:
        if value is None:
            raise ValueError("TtlCache does not store None")
        self._entries.pop(key, None)
        while len(self._entries) >= self._max_entries:
            oldest_key = next(iter(self._entries))
            self._entries.pop(oldest_key, None)
        self._entries[key] = _CacheEntry(stored_at_mono=self._clock(), value=value)

    def invalidate(self, key: K) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
