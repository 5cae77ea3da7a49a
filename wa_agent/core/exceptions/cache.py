"""
Cache-Related Exceptions

All exceptions related to caching operations (Redis, in-memory cache).
The two-tier cache never lets these escape to its callers; they are raised by
the Redis client and caught at the cache boundary.
"""

from wa_agent.core.exceptions.base import WAAgentError


class CacheError(WAAgentError):
    """Base exception for cache-related errors."""
    pass


class CacheConnectionError(CacheError):
    """
    Raised when unable to connect to the remote cache (Redis).

    Common causes:
    - Redis server is down
    - Network connectivity issues
    - Incorrect host/port configuration
    - Authentication failure
    """
    pass


class CacheKeyError(CacheError):
    """
    Raised when a remote key operation fails.

    Common causes:
    - Operation timeout
    - Connection dropped mid-command
    - Memory limit exceeded
    """
    pass
