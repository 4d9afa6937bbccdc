"""Bounded, TTL-limited cache of validated address sets.

Injected into a ``Resolver`` explicitly; there is no module-level instance.
An entry's deadline is fixed when it is stored, so hits never extend it.
"""
from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class CacheEntry:
    addresses: tuple[str, ...]
    expires_at: float
    hits: int = 0

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class DnsCacheStats:
    hits: int = 0
    misses: int = 0
    expirations: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class DnsCache:
    """LRU keyed by ``host:port``. No method awaits, so one event loop may share it."""

    def __init__(self, max_size: int = 1024, ttl_seconds: float = 60.0) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._stats = DnsCacheStats()

    @staticmethod
    def _make_key(host: str, port: int) -> str:
        return f"{host.strip().lower()}:{port}"

    def get(self, host: str, port: int) -> tuple[str, ...] | None:
        key = self._make_key(host, port)
        entry = self._entries.get(key)
        if entry is not None and entry.expired(time.monotonic()):
            del self._entries[key]
            self._stats.expirations += 1
            logger.debug("dns_cache_expired", key=key)
            entry = None
        if entry is None:
            self._stats.misses += 1
            return None

        self._entries.move_to_end(key)
        entry.hits += 1
        self._stats.hits += 1
        return entry.addresses

    def put(self, host: str, port: int, addresses: tuple[str, ...]) -> None:
        key = self._make_key(host, port)
        self._entries.pop(key, None)
        while len(self._entries) >= self._max_size:
            evicted, _ = self._entries.popitem(last=False)
            self._stats.evictions += 1
            logger.debug("dns_cache_evicted", key=evicted)
        self._entries[key] = CacheEntry(
            addresses=tuple(addresses),
            expires_at=time.monotonic() + self._ttl,
        )

    def invalidate(self, host: str, port: int) -> bool:
        """Drop the entry for *host* on *port*; returns whether one existed."""
        return self._entries.pop(self._make_key(host, port), None) is not None

    def clear(self) -> None:
        self._entries.clear()
        logger.info("dns_cache_cleared")

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def hit_rate(self) -> float:
        return self._stats.hit_rate

    def stats(self) -> dict:
        return {
            "size": self.size,
            "max_size": self._max_size,
            "ttl_seconds": self._ttl,
            "total_hits": self._stats.hits,
            "total_misses": self._stats.misses,
            "expirations": self._stats.expirations,
            "evictions": self._stats.evictions,
            "hit_rate": round(self._stats.hit_rate, 3),
        }
