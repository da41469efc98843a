# supplywatch/storage/hash_cache.py

"""In-memory TTL cache of perceptual image hashes keyed by image URL."""

import logging
import time
from dataclasses import dataclass

from supplywatch.config.settings import Settings

logger = logging.getLogger("supplywatch.cache")


@dataclass
class CacheEntry:
    """A cached hash (``None`` records an image that could not be hashed)."""

    image_hash: str | None
    timestamp: float


class ImageHashCache:
    """Cache hashes so a product's images are fetched once per TTL."""

    def __init__(self, ttl: float | None = None) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._ttl: float = ttl if ttl is not None else Settings.IMAGE_HASH_CACHE_TTL

    def lookup(self, url: str) -> tuple[bool, str | None]:
        """Return ``(hit, hash)`` for *url*."""
        self._evict_expired(time.time())
        entry = self._entries.get(url)
        if entry is None:
            return False, None
        return True, entry.image_hash

    def store(self, url: str, image_hash: str | None) -> None:
        self._entries[url] = CacheEntry(image_hash, time.time())

    def clear(self) -> int:
        """Purge all cached entries; returns how many were removed."""
        count = len(self._entries)
        self._entries.clear()
        logger.info("Image hash cache purged (%d entries removed)", count)
        return count

    def __len__(self) -> int:
        return len(self._entries)

    def _evict_expired(self, now: float) -> None:
        before = len(self._entries)
        self._entries = {
            url: e
            for url, e in self._entries.items()
            if now - e.timestamp < self._ttl
        }
        evicted = before - len(self._entries)
        if evicted:
            logger.debug("Evicted %d expired hash entries", evicted)
