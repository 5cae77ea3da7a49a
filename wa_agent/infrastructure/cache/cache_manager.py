"""
Two-Tier Cache Manager

Architecture:
    TwoTierCache (Public API)
        ├── CacheStrategy (L1→L2 coordination logic)
        │   ├── L1Storage (In-memory LRU with per-entry TTL)
        │   └── L2Storage (Remote key/value store, orjson values)
        └── CacheObserver (Stats, metrics & logging)

Consistency model:
    - L1 is per-process, L2 is shared; last writer wins across tiers
    - L2 is authoritative on an L1 miss; an L2 hit warms L1
    - L2 failures are logged and degrade to "miss" / "not stored". They are
      never raised to callers, so ``set(k, v)`` then ``get(k)`` returns ``v``
      even with Redis down
"""

import asyncio
import math
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

import orjson

from wa_agent.core.config.constants import (
    L1_CACHE_DEFAULT_TTL,
    L1_CACHE_MAX_SIZE,
    L1_CACHE_STALE_WHILE_REVALIDATE,
    REDIS_KEY_CACHE_NAMESPACE,
)
from wa_agent.core.interfaces.cache import RemoteKeyValueStore
from wa_agent.core.logging.logger import get_logger, log_stage
from wa_agent.core.observability.metrics import MetricsCollector

logger = get_logger(__name__)

CacheSource = Literal["l1", "stale", "l2", "miss"]


def generate_cache_key(prefix: str, *parts: Any) -> str:
    """
    Build a colon-joined cache key.

    Example:
        >>> generate_cache_key("agent", "whatsapp:+1555", "es")
        'agent:whatsapp:+1555:es'
    """
    return ":".join([prefix, *(str(part) for part in parts)])


# =============================================================================
# LAYER 1: STORAGE IMPLEMENTATIONS
# =============================================================================


@dataclass
class _L1Entry:
    value: Any
    expires_at: float
    stale_until: float


class L1Storage:
    """
    In-memory LRU cache storage with per-entry expiry.

    STAGE-2.1: L1 in-memory cache

    - OrderedDict for O(1) access and LRU ordering
    - Reads refresh recency; expired entries are dropped on read
    - Oldest (least recently used) entry evicted when over capacity
    - An entry past its TTL but inside ``stale_window`` seconds is handed out
      once by ``lookup`` (flagged stale) and then dropped

    This is a per-process cache, not shared across workers.
    """

    def __init__(
        self,
        max_size: int = L1_CACHE_MAX_SIZE,
        clock: Callable[[], float] = time.monotonic,
        stale_window: float = 0.0,
    ):
        self._max_size = max_size
        self._clock = clock
        self._stale_window = stale_window
        self._cache: OrderedDict[str, _L1Entry] = OrderedDict()
        self._lock = asyncio.Lock()

    async def lookup(self, key: str) -> tuple[Any | None, bool]:
        """
        Returns:
            ``(value, stale)``; ``(None, False)`` when absent or past the stale window
        """
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None, False

            now = self._clock()
            if entry.expires_at > now:
                self._cache.move_to_end(key)
                return entry.value, False

            del self._cache[key]
            if now < entry.stale_until:
                return entry.value, True
            return None, False

    async def get(self, key: str) -> Any | None:
        value, stale = await self.lookup(key)
        return None if stale else value

    async def set(self, key: str, value: Any, ttl: float) -> None:
        async with self._lock:
            if key in self._cache:
                self._cache.move_to_end(key)
            expires_at = self._clock() + ttl
            self._cache[key] = _L1Entry(value=value, expires_at=expires_at, stale_until=expires_at + self._stale_window)

            while len(self._cache) > self._max_size:
                self._cache.popitem(last=False)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()

    def get_size(self) -> int:
        return len(self._cache)

    def get_max_size(self) -> int:
        return self._max_size

    def get_keys(self) -> list[str]:
        """Keys in LRU order (oldest first)."""
        return list(self._cache.keys())


class L2Storage:
    """
    Remote cache storage (Redis) under a namespace.

    STAGE-2.2: L2 remote cache

    Values are serialized with orjson. Keys are stored as
    ``<namespace>:<key>`` (the Redis client adds its own global prefix).
    Methods raise whatever the backend raises; degradation happens in
    ``TwoTierCache``.
    """

    def __init__(self, remote: RemoteKeyValueStore, namespace: str = REDIS_KEY_CACHE_NAMESPACE):
        self._remote = remote
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Any | None:
        raw = await self._remote.get(self._key(key))
        if raw is None:
            return None
        return orjson.loads(raw)

    async def set(self, key: str, value: Any, ttl: float) -> None:
        # SETEX takes whole seconds
        await self._remote.set_with_expiry(self._key(key), orjson.dumps(value), max(1, math.ceil(ttl)))

    async def delete(self, key: str) -> None:
        await self._remote.delete(self._key(key))

    async def clear(self) -> int:
        return await self._remote.flush_all(f"{self._namespace}:*")

    async def health_check(self) -> dict[str, Any]:
        health_check = getattr(self._remote, "health_check", None)
        if health_check is None:
            return {"status": "healthy"}
        return await health_check()


# =============================================================================
# LAYER 2: OBSERVABILITY
# =============================================================================


class CacheObserver:
    """
    Tracks cache performance and logs operations.

    Metrics Tracked:
    - L1 hits, L2 hits, misses
    - L2 errors (degraded operations)
    """

    def __init__(self, metrics: MetricsCollector | None = None):
        self._metrics = metrics
        self._hits_l1 = 0
        self._hits_stale = 0
        self._hits_l2 = 0
        self._misses = 0
        self._l2_errors = 0

    def record_lookup(self, source: CacheSource, key: str) -> None:
        if source == "l1":
            self._hits_l1 += 1
            log_stage(logger, "2.1", "L1 cache hit", level="debug", cache_key=key)
        elif source == "stale":
            self._hits_stale += 1
            log_stage(logger, "2.1", "L1 stale hit, refreshing", level="debug", cache_key=key)
        elif source == "l2":
            self._hits_l2 += 1
            log_stage(logger, "2.2", "L2 cache hit", level="debug", cache_key=key)
        else:
            self._misses += 1
            log_stage(logger, "2.2", "Cache miss", level="debug", cache_key=key)

        if self._metrics:
            if source == "miss":
                self._metrics.record_cache_miss()
            else:
                self._metrics.record_cache_hit(source)

    def record_l2_error(self, operation: str, key: str | None, error: Exception) -> None:
        self._l2_errors += 1
        logger.warning(
            "L2 cache operation failed, degrading",
            stage="2.ERR",
            operation=operation,
            cache_key=key,
            error=str(error),
            error_type=type(error).__name__,
        )
        if self._metrics:
            self._metrics.record_remote_error("cache", operation)

    def get_stats(self) -> dict[str, Any]:
        hits = self._hits_l1 + self._hits_stale + self._hits_l2
        total = hits + self._misses
        hit_rate = hits / total if total > 0 else 0.0

        return {
            "l1_hits": self._hits_l1,
            "stale_hits": self._hits_stale,
            "l2_hits": self._hits_l2,
            "misses": self._misses,
            "l2_errors": self._l2_errors,
            "total_requests": total,
            "hit_rate": round(hit_rate, 3),
            "l1_hit_rate": round(self._hits_l1 / total, 3) if total > 0 else 0.0,
        }


# =============================================================================
# LAYER 3: CACHE STRATEGY
# =============================================================================


class CacheStrategy:
    """
    Orchestrates L1→L2 lookups and population, absorbing L2 failures.

    Algorithm:
        GET: L1 → L2 → miss (warm L1 on L2 hit). A stale L1 entry is served
             once and L1 is refreshed from L2 in the background
        SET: L1, then L2 (best effort)
        DELETE: L1, then L2 (best effort)
    """

    def __init__(self, l1: L1Storage, l2: L2Storage | None, observer: CacheObserver, default_ttl: float):
        self._l1 = l1
        self._l2 = l2
        self._observer = observer
        self._default_ttl = default_ttl
        self._refreshes: dict[str, asyncio.Task] = {}

    async def get(self, key: str) -> tuple[Any | None, CacheSource]:
        value, stale = await self._l1.lookup(key)
        if value is not None:
            if stale:
                self._schedule_refresh(key)
                return value, "stale"
            return value, "l1"

        if self._l2 is None:
            return None, "miss"

        try:
            value = await self._l2.get(key)
        except Exception as e:
            self._observer.record_l2_error("get", key, e)
            return None, "miss"

        if value is not None:
            await self._l1.set(key, value, self._default_ttl)
            return value, "l2"

        return None, "miss"

    def _schedule_refresh(self, key: str) -> None:
        if self._l2 is None or key in self._refreshes:
            return
        task = asyncio.create_task(self._refresh(key))
        self._refreshes[key] = task
        task.add_done_callback(lambda _: self._refreshes.pop(key, None))

    async def _refresh(self, key: str) -> None:
        try:
            value = await self._l2.get(key)
        except Exception as e:
            self._observer.record_l2_error("refresh", key, e)
            return
        if value is not None:
            await self._l1.set(key, value, self._default_ttl)
            log_stage(logger, "2.2", "L1 refreshed from L2", level="debug", cache_key=key)

    async def wait_for_refreshes(self) -> None:
        if self._refreshes:
            await asyncio.gather(*list(self._refreshes.values()), return_exceptions=True)

    async def set(self, key: str, value: Any, ttl: float) -> bool:
        """Returns True when the value also reached L2."""
        await self._l1.set(key, value, ttl)

        if self._l2 is None:
            return False
        try:
            await self._l2.set(key, value, ttl)
        except Exception as e:
            self._observer.record_l2_error("set", key, e)
            return False
        return True

    async def delete(self, key: str) -> None:
        await self._l1.delete(key)

        if self._l2 is None:
            return
        try:
            await self._l2.delete(key)
        except Exception as e:
            self._observer.record_l2_error("delete", key, e)

    async def clear(self) -> None:
        await self._l1.clear()

        if self._l2 is None:
            return
        try:
            removed = await self._l2.clear()
            log_stage(logger, "2.4", "L2 cache namespace flushed", removed=removed)
        except Exception as e:
            self._observer.record_l2_error("clear", None, e)


# =============================================================================
# LAYER 4: PUBLIC API
# =============================================================================


class TwoTierCache:
    """
    Local LRU/TTL cache backed by an optional shared remote tier.

    Usage:
        cache = TwoTierCache(remote=redis_client, max_size=1000, default_ttl=300)

        await cache.set("profile:+15550001111", {"lang": "es"})
        profile = await cache.get("profile:+15550001111")

        reply = await cache.get_or_compute(key, lambda: build_reply(...), ttl=60)

    Without a remote (``remote=None``) it is a plain in-process LRU.
    """

    def __init__(
        self,
        remote: RemoteKeyValueStore | None = None,
        max_size: int = L1_CACHE_MAX_SIZE,
        default_ttl: float = L1_CACHE_DEFAULT_TTL,
        namespace: str = REDIS_KEY_CACHE_NAMESPACE,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], float] = time.monotonic,
        stale_while_revalidate: float = L1_CACHE_STALE_WHILE_REVALIDATE,
    ):
        """
        Initialize the cache.

        STAGE-2.0: Cache initialization

        ``stale_while_revalidate`` (seconds) lets an L1 entry that just expired
        be served once more while it is refreshed from L2; 0 disables it.
        """
        self._default_ttl = default_ttl
        self._l1 = L1Storage(max_size=max_size, clock=clock, stale_window=stale_while_revalidate)
        self._l2 = L2Storage(remote, namespace) if remote is not None else None
        self._observer = CacheObserver(metrics)
        self._strategy = CacheStrategy(self._l1, self._l2, self._observer, default_ttl)

        logger.info(
            "Two-tier cache initialized",
            stage="2.0",
            l1_max_size=max_size,
            default_ttl=default_ttl,
            stale_while_revalidate=stale_while_revalidate,
            remote_enabled=self._l2 is not None,
            namespace=namespace,
        )

    @property
    def remote_enabled(self) -> bool:
        return self._l2 is not None

    async def get(self, key: str) -> Any | None:
        """
        Get value with L1→L2 fallback.

        Returns:
            Cached value or None on miss (including when L2 is unreachable)
        """
        value, source = await self._strategy.get(key)
        self._observer.record_lookup(source, key)
        return value

    async def wait_for_refreshes(self) -> None:
        """Wait for background stale-entry refreshes still in flight."""
        await self._strategy.wait_for_refreshes()

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """
        Store value in both tiers.

        STAGE-2.3: Cache population

        Args:
            key: Cache key
            value: JSON-serializable value
            ttl: Time-to-live in seconds (default: ``default_ttl``)
        """
        ttl = ttl if ttl is not None else self._default_ttl
        await self._strategy.set(key, value, ttl)
        log_stage(logger, "2.3", "Cache set", level="debug", cache_key=key, ttl=ttl)

    async def delete(self, key: str) -> None:
        """
        Remove key from both tiers.

        STAGE-2.4: Cache invalidation
        """
        await self._strategy.delete(key)
        log_stage(logger, "2.4", "Cache invalidated", level="debug", cache_key=key)

    async def clear(self) -> None:
        """Empty L1, then flush this cache's namespace on L2 (best effort)."""
        await self._strategy.clear()
        logger.info("Cache cleared", stage="2.4")

    async def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Any],
        ttl: float | None = None,
    ) -> Any:
        """
        Cache-aside: return the cached value or compute, store and return it.

        STAGE-2.5: Cache-aside pattern

        ``compute_fn`` may be sync or async. A ``None`` result is returned but
        not cached.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = compute_fn()
        if asyncio.iscoroutine(value):
            value = await value

        if value is not None:
            await self.set(key, value, ttl)
        return value

    generate_cache_key = staticmethod(generate_cache_key)

    def get_stats(self) -> dict[str, Any]:
        l1_size = self._l1.get_size()
        l1_max = self._l1.get_max_size()

        return {
            **self._observer.get_stats(),
            "l1_size": l1_size,
            "l1_max_size": l1_max,
            "l1_capacity_utilization": round(l1_size / l1_max * 100, 2) if l1_max else 0.0,
            "remote_enabled": self._l2 is not None,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

    async def health_check(self) -> dict[str, Any]:
        health = {
            "status": "healthy",
            "l1": {
                "status": "healthy",
                "size": self._l1.get_size(),
                "max_size": self._l1.get_max_size(),
            },
            "l2": None,
        }

        if self._l2 is None:
            health["l2"] = {"status": "disabled"}
            return health

        try:
            l2_health = await self._l2.health_check()
            health["l2"] = l2_health
            if l2_health.get("status") != "healthy":
                health["status"] = "degraded"
        except Exception as e:
            health["status"] = "degraded"
            health["l2"] = {"status": "error", "error": str(e)}

        return health
