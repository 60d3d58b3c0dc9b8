from __future__ import annotations

import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from redis import Redis

from stockdesk.config.settings import Settings

DEFAULT_TTL_SECONDS = 5 * 60


@dataclass(frozen=True)
class CacheEntry:
    data: Any
    timestamp: float
    expires_at: float


class Cache(Protocol):
    def set(self, key: str, data: Any, ttl: float | None = None) -> None: ...

    def get(self, key: str) -> Any | None: ...

    def remove(self, key: str) -> None: ...

    def clear(self) -> None: ...


class TTLCache:
    """In-process key/value store with per-entry expiry.

    Expired entries are dropped lazily when read; there is no background sweep.
    Every ``set`` replaces the whole entry, last writer wins.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def set(self, key: str, data: Any, ttl: float | None = None) -> None:
        timestamp = self._clock()
        expires_at = timestamp + (self.default_ttl if ttl is None else ttl)
        self._entries[key] = CacheEntry(data=data, timestamp=timestamp, expires_at=expires_at)

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            self._entries.pop(key, None)
            return None
        return entry.data

    def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisTTLCache:
    """Same contract as ``TTLCache`` backed by Redis ``SETEX``.

    Payloads must be JSON serialisable. Redis failures read as a miss and
    writes are dropped, so a cache outage never fails the caller.
    """

    def __init__(
        self,
        client_factory: Callable[[], Redis],
        default_ttl: float = DEFAULT_TTL_SECONDS,
        key_prefix: str = "stockdesk:cache:",
    ) -> None:
        self.default_ttl = default_ttl
        self.key_prefix = key_prefix
        self._client_factory = client_factory

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def set(self, key: str, data: Any, ttl: float | None = None) -> None:
        seconds = max(1, int(self.default_ttl if ttl is None else ttl))
        try:
            client = self._client_factory()
            client.setex(self._key(key), seconds, json.dumps(data))
        except Exception:
            return None

    def get(self, key: str) -> Any | None:
        try:
            client = self._client_factory()
            raw = client.get(self._key(key))
        except Exception:
            return None

        if not raw:
            return None

        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError, ValueError):
            return None

    def remove(self, key: str) -> None:
        try:
            client = self._client_factory()
            client.delete(self._key(key))
        except Exception:
            return None

    def clear(self) -> None:
        try:
            client = self._client_factory()
            keys = list(client.scan_iter(match=f"{self.key_prefix}*"))
            if keys:
                client.delete(*keys)
        except Exception:
            return None


def build_cache(settings: Settings) -> Cache:
    cache_settings = settings.cache
    if cache_settings.backend == "redis":
        return RedisTTLCache(
            lambda: Redis.from_url(settings.redis_url),
            default_ttl=cache_settings.default_ttl_seconds,
            key_prefix=cache_settings.key_prefix,
        )
    return TTLCache(default_ttl=cache_settings.default_ttl_seconds)
