from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, Callable
import asyncio
from datetime import datetime, timedelta


class KeyValueStore(ABC):
    """Session key-value store with per-key TTL"""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int = 3600) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        pass


class CacheMemoryStore(KeyValueStore):
    """In-memory cache store with TTL support"""

    def __init__(self, clock: Callable[[], datetime] = datetime.utcnow):
        self.cache: Dict[str, Dict[str, Any]] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

    async def set(self, key: str, value: Any, ttl: int = 3600) -> None:
        """Set a value in cache with TTL"""

        async with self._lock:
            self.cache[key] = {
                "value": value,
                "expires_at": self._clock() + timedelta(seconds=ttl)
            }

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired"""

        async with self._lock:
            entry = self.cache.get(key)
            if entry is None:
                return None

            if self._clock() > entry["expires_at"]:
                del self.cache[key]
                return None

            return entry["value"]

    async def delete(self, key: str) -> bool:
        """Delete a key from cache"""

        async with self._lock:
            return self.cache.pop(key, None) is not None

    async def clear_expired(self, prefix: str = "") -> int:
        """Clear expired entries under a key prefix and return count"""

        async with self._lock:
            now = self._clock()
            expired_keys = [
                key for key, entry in self.cache.items()
                if key.startswith(prefix) and now > entry["expires_at"]
            ]

            for key in expired_keys:
                del self.cache[key]

            return len(expired_keys)

    async def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""

        async with self._lock:
            now = self._clock()
            active_count = sum(
                1 for entry in self.cache.values()
                if now <= entry["expires_at"]
            )

            return {
                "total_keys": len(self.cache),
                "active_keys": active_count,
                "expired_keys": len(self.cache) - active_count
            }
