"""
In-memory TTL stores: checkout flows per cart and read-only reference data
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class SimpleAsyncCache:
    """Simple in-memory async cache with TTL support"""

    def __init__(self, default_ttl: int = 60):
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._default_ttl = default_ttl
        self._lock = asyncio.Lock()

    async def get(self, key: str, touch: bool = False) -> Optional[Any]:
        """Get value from cache; ``touch`` restarts the entry's TTL (sliding expiry)"""
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            now = time.time()
            if now >= entry['expires']:
                del self._cache[key]
                return None
            if touch:
                entry['expires'] = now + entry['ttl']
            return entry['value']

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Set value in cache with TTL"""
        ttl = ttl or self._default_ttl
        async with self._lock:
            self._cache[key] = {
                'value': value,
                'ttl': ttl,
                'expires': time.time() + ttl,
            }

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()

    async def cleanup_expired(self) -> int:
        """Remove expired entries, returns how many were dropped"""
        current_time = time.time()
        async with self._lock:
            expired_keys = [
                key for key, entry in self._cache.items()
                if current_time >= entry['expires']
            ]
            for key in expired_keys:
                del self._cache[key]
        return len(expired_keys)

    async def keys(self) -> List[str]:
        """Keys of live entries; expired ones are skipped but left for cleanup_expired"""
        now = time.time()
        async with self._lock:
            return [key for key, entry in self._cache.items() if now < entry['expires']]

    async def run_cleanup(self, interval: float) -> None:
        """Drop expired entries every ``interval`` seconds until cancelled"""
        while True:
            await asyncio.sleep(interval)
            dropped = await self.cleanup_expired()
            if dropped:
                logger.info(f"Cache cleanup dropped {dropped} expired entr{'y' if dropped == 1 else 'ies'}")

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[Any]], ttl: Optional[int] = None) -> Any:
        cached_result = await self.get(key)
        if cached_result is not None:
            return cached_result
        result = await loader()
        await self.set(key, result, ttl)
        return result


class FlowStore(SimpleAsyncCache):
    """Checkout flows keyed by cart id. Idle flows expire; every access extends them."""

    async def get(self, key: str, touch: bool = True) -> Optional[Any]:
        return await super().get(key, touch=touch)


# Global instances (TTLs applied from settings at call sites)
flow_store = FlowStore(default_ttl=1800)
reference_cache = SimpleAsyncCache(default_ttl=300)
