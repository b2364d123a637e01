"""
In-process key/value cache with per-read age limits.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass
class CacheEntry:
    value: Any
    stored_at: float


class TTLCache:
    """
    Key/value cache where freshness is decided by the reader.

    Entries never expire on their own; ``get(key, max_age=...)`` treats an entry
    older than ``max_age`` seconds as missing and drops it. ``max_age=None``
    means the entry is valid forever (immutable data such as mined transactions).
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str, max_age: float | None = None, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        if max_age is not None and self._clock() - entry.stored_at > max_age:
            del self._entries[key]
            return default
        return entry.value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock())

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
