import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from rewriting_proxy.models import CacheEntry
from rewriting_proxy.vars import (
    ASSET_CACHE,
    ASSET_CACHE_MAX_BYTES,
    ASSET_CACHE_MAX_ENTRIES,
    ASSET_CACHE_TTL,
)

logger = logging.getLogger("uvicorn.error")

# Share of entries dropped when the cache is full
EVICTION_FRACTION = 0.2


class AssetCacheBase(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        pass

    @abstractmethod
    def put(self, key: str, payload: bytes, content_type: str) -> bool:
        """Store ``payload``; returns False when the entry was rejected."""
        pass


def asset_cache(name: str = ASSET_CACHE) -> AssetCacheBase:
    if name == "InMemoryAssetCache":
        return InMemoryAssetCache()
    cls = globals().get(name)
    if cls and isinstance(cls, type) and issubclass(cls, AssetCacheBase):
        return cls()
    else:
        raise ValueError(f"Unknown asset cache type: {name}")


class InMemoryAssetCache(AssetCacheBase):
    """
    Bounded TTL store for static upstream responses.

    Entries are immutable; lookups hand out the stored entry itself. When full,
    the oldest ~20% of entries (by creation time) are evicted before insert.
    """

    def __init__(
        self,
        ttl: float = ASSET_CACHE_TTL,
        max_entries: int = ASSET_CACHE_MAX_ENTRIES,
        max_entry_bytes: int = ASSET_CACHE_MAX_BYTES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_entries = max(1, max_entries)
        self.max_entry_bytes = max_entry_bytes
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.created_at >= self.ttl:
                del self._entries[key]
                return None
            return entry

    def put(self, key: str, payload: bytes, content_type: str) -> bool:
        size = len(payload)
        if size > self.max_entry_bytes:
            logger.debug(f"[AssetCache] Rejecting {key}: {size} bytes over ceiling")
            return False

        entry = CacheEntry(
            key=key,
            payload=bytes(payload),
            content_type=content_type,
            created_at=self._clock(),
            size_bytes=size,
        )
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict_oldest()
            self._entries[key] = entry
        return True

    def _evict_oldest(self) -> None:
        count = max(1, int(len(self._entries) * EVICTION_FRACTION))
        oldest = sorted(self._entries.values(), key=lambda e: e.created_at)[:count]
        for entry in oldest:
            del self._entries[entry.key]
        logger.debug(f"[AssetCache] Evicted {len(oldest)} entries")


class NoopAssetCache(AssetCacheBase):
    """Cache that never stores anything."""

    def get(self, key: str) -> Optional[CacheEntry]:
        return None

    def put(self, key: str, payload: bytes, content_type: str) -> bool:
        return False
