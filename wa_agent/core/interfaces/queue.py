"""
Remote List Protocol

The list operations the durable queue is built on (LPUSH producer side,
BRPOP consumer side).
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class RemoteListStore(Protocol):
    """Shared store exposing Redis-style list commands."""

    async def lpush(self, key: str, *values: str | bytes) -> int:
        """Push to the head of the list; returns the new length."""
        ...

    async def brpop(self, key: str, timeout: float) -> str | None:
        """Pop from the tail, waiting up to ``timeout`` seconds; None on timeout."""
        ...

    async def llen(self, key: str) -> int:
        ...

    async def delete(self, *keys: str) -> int:
        ...
