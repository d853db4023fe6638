from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """
    Small in-process cache for upstream App Store responses.

    Concurrent misses for the same key share one upstream call: the second
    caller waits on the per-key lock and then reads the fresh entry.
    """

    def __init__(self, ttl_seconds: float, maxsize: int = 1024) -> None:
        self.ttl_seconds = max(0.0, float(ttl_seconds))
        self.maxsize = max(1, int(maxsize))
        self._data: Dict[Hashable, CacheEntry] = {}
        self._locks: Dict[Hashable, asyncio.Lock] = {}

    def get(self, key: Hashable) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at <= time.monotonic():
            self._data.pop(key, None)
            return None
        return entry.value

    def set(self, key: Hashable, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else max(0.0, float(ttl_seconds))
        if ttl <= 0:
            return
        self._data[key] = CacheEntry(value=value, expires_at=time.monotonic() + ttl)
        self._prune()

    async def get_or_set(
        self,
        key: Hashable,
        factory: Callable[[], Awaitable[Any]],
    ) -> Tuple[Any, bool]:
        value = self.get(key)
        if value is not None:
            return value, True

        lock = self._locks.setdefault(key, asyncio.Lock())
        try:
            async with lock:
                value = self.get(key)
                if value is not None:
                    return value, True
                value = await factory()
                self.set(key, value)
                return value, False
        finally:
            if key in self._locks and not self._locks[key].locked():
                self._locks.pop(key, None)

    def _prune(self) -> None:
        if len(self._data) <= self.maxsize:
            return
        now = time.monotonic()
        for k in [k for k, v in self._data.items() if v.expires_at <= now]:
            self._data.pop(k, None)
        over = len(self._data) - self.maxsize
        if over <= 0:
            return
        # earliest expiry goes first
        for k, _ in sorted(self._data.items(), key=lambda kv: kv[1].expires_at)[:over]:
            self._data.pop(k, None)


def cache_from_env(ttl_env: str, default_ttl: str = "300") -> Optional[TTLCache]:
    """
    Build a cache from APPSTORE_CACHE_* env vars, or None when caching is off
    (APPSTORE_CACHE_ENABLED=0 or a non-positive TTL).
    """
    enabled = os.getenv("APPSTORE_CACHE_ENABLED", "1").lower() not in {"0", "false", "no"}
    maxsize = int(os.getenv("APPSTORE_CACHE_MAXSIZE", "2048"))
    ttl = float(os.getenv(ttl_env, default_ttl))
    if not enabled or ttl <= 0:
        return None
    return TTLCache(ttl, maxsize)
