from typing import Dict, Any, Callable, Optional
import asyncio
import time

import structlog

from thinkloop.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)


class CacheMemoryStore:
    """In-memory cache store with TTL support.

    Values are stored and returned by reference. Expired entries are dropped
    lazily on read and by a periodic sweep.
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        check_period: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.default_ttl = default_ttl
        self.check_period = check_period
        self.clock = clock
        self.cache: Dict[str, Dict[str, Any]] = {}
        self.hits = 0
        self.misses = 0
        self._sweeper: Optional[asyncio.Task] = None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Set a value in cache with TTL"""

        self.cache[key] = {
            "value": value,
            "expires_at": self.clock() + (ttl if ttl is not None else self.default_ttl)
        }

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired"""

        entry = self.cache.get(key)
        if entry is None:
            self.misses += 1
            metrics.increment_counter("cache.miss")
            return None

        if self.clock() >= entry["expires_at"]:
            del self.cache[key]
            self.misses += 1
            metrics.increment_counter("cache.miss")
            return None

        self.hits += 1
        metrics.increment_counter("cache.hit")
        return entry["value"]

    def delete(self, key: str) -> bool:
        """Delete a key from cache"""

        return self.cache.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        """Invalidate every key starting with prefix"""

        keys = [key for key in self.cache if key.startswith(prefix)]
        for key in keys:
            del self.cache[key]
        return len(keys)

    def flush(self) -> None:
        self.cache.clear()
        logger.info("Cache flushed")

    def clear_expired(self) -> int:
        """Clear expired entries and return count"""

        now = self.clock()
        expired_keys = [
            key for key, entry in self.cache.items()
            if now >= entry["expires_at"]
        ]

        for key in expired_keys:
            del self.cache[key]

        return len(expired_keys)

    async def _sweep_forever(self):
        while True:
            await asyncio.sleep(self.check_period)
            removed = self.clear_expired()
            if removed:
                logger.debug("Expired cache entries removed", count=removed)

    def start_sweeper(self) -> asyncio.Task:
        """Start the periodic sweep on the running loop"""

        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())
        return self._sweeper

    async def stop_sweeper(self):
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""

        now = self.clock()
        active_count = sum(
            1 for entry in self.cache.values()
            if now < entry["expires_at"]
        )

        return {
            "total_keys": len(self.cache),
            "active_keys": active_count,
            "expired_keys": len(self.cache) - active_count,
            "hits": self.hits,
            "misses": self.misses
        }
