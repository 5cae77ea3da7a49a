"""
Remote Cache Backend Protocol

Minimal surface the two-tier cache needs from its remote tier. ``RedisClient``
implements it; tests pass an in-memory fake.

Implementations raise on failure (``CacheError`` subclasses or transport
errors). Swallowing those errors is the cache's job, not the backend's.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class RemoteKeyValueStore(Protocol):
    """
    Shared key/value store with per-key expiry.

    Values are opaque strings (the cache serializes with orjson before
    handing them over).
    """

    async def get(self, key: str) -> str | None:
        """
        Get value for key.

        Returns:
            Optional[str]: Value or None if not found / expired
        """
        ...

    async def set_with_expiry(self, key: str, value: str | bytes, ttl: int) -> bool:
        """
        Store value with a TTL in seconds (SETEX semantics).

        Returns:
            bool: True if stored
        """
        ...

    async def delete(self, *keys: str) -> int:
        """
        Delete keys.

        Returns:
            int: Number of keys deleted
        """
        ...

    async def flush_all(self, match: str = "*") -> int:
        """
        Delete every key matching ``match`` within this store's namespace.

        Returns:
            int: Number of keys deleted
        """
        ...
