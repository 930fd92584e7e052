"""In-process TTL cache for short-lived query results."""

from __future__ import annotations

from collections.abc import Callable, Hashable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict


@dataclass(slots=True)
class _CacheEntry:
    value: object
    expires_at: datetime

    def is_valid(self, *, now: datetime) -> bool:
        return now < self.expires_at


_MISSING = object()


class TTLCache:
    """Map keys to values that expire ``ttl`` after being stored."""

    def __init__(self, ttl: timedelta, *, clock: Callable[[], datetime] | None = None) -> None:
        self._ttl = ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: Dict[Hashable, _CacheEntry] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        if not entry.is_valid(now=self._clock()):
            del self._entries[key]
            return default
        return entry.value

    def set(self, key: Hashable, value: Any) -> Any:
        if self._ttl > timedelta(0):
            self._entries[key] = _CacheEntry(value=value, expires_at=self._clock() + self._ttl)
        return value

    def get_or_set(self, key: Hashable, factory: Callable[[], Any]) -> Any:
        cached = self.get(key, _MISSING)
        if cached is not _MISSING:
            return cached
        return self.set(key, factory())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["TTLCache"]
