"""Cache infrastructure: Redis client and the two-tier cache."""

from .cache_manager import TwoTierCache, generate_cache_key
from .redis_client import RedisClient

__all__ = ["RedisClient", "TwoTierCache", "generate_cache_key"]
