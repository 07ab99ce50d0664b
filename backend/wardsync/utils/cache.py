"""In-memory cache with TTL support."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any


class TTLCache:
    """Keyed cache whose entries expire a fixed number of seconds after being set.

    Expired entries are treated as absent and evicted on read. The clock is
    injectable so expiry can be driven deterministically.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        now = self._clock()
        async with self._lock:
            entry = self._entries.get(key)
            if not entry:
                return None
            expires_at, value = entry
            if now >= expires_at:
                self._entries.pop(key, None)
                return None
            return value

    async def set(self, key: str, value: Any) -> None:
        expires_at = self._clock() + self.ttl_seconds
        async with self._lock:
            self._entries[key] = (expires_at, value)

    async def pop(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
