"""
Redis Client with Connection Pooling

Architecture:
    RedisClient (Public API)
        ├── ConnectionManager (Connection lifecycle)
        ├── OperationExecutor (Command execution with error handling)
        └── HealthMonitor (Health checks and pool metrics)

Every key goes through the configured prefix (``wa-agent:`` by default), so
several deployments can share one Redis database. Callers always pass
unprefixed keys.

Failure contract:
    - connect() raises CacheConnectionError
    - every command raises CacheKeyError on RedisError
    The two-tier cache and the durable queue catch these at their boundary.
"""

import asyncio
import time
from typing import Any

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from wa_agent.core.config.settings import RedisSettings
from wa_agent.core.exceptions import CacheConnectionError, CacheKeyError
from wa_agent.core.logging.logger import get_logger

logger = get_logger(__name__)

SCAN_BATCH_SIZE = 500


# =============================================================================
# LAYER 1: CONNECTION MANAGEMENT
# =============================================================================


class ConnectionManager:
    """
    Manages Redis connection lifecycle and pooling.

    Pool Configuration (from RedisSettings):
    - Max connections: REDIS_MAX_CONNECTIONS
    - Socket timeout / connect timeout
    - Health check interval
    - Retry on timeout: Enabled
    """

    def __init__(self, settings: RedisSettings):
        self._settings = settings
        self._pool: ConnectionPool | None = None
        self._client: redis.Redis | None = None
        self._is_connected = False
        self._connect_lock = asyncio.Lock()

    async def connect(self) -> redis.Redis:
        """
        Establish connection to Redis with connection pooling.

        STAGE-REDIS.2: Connection establishment

        Raises:
            CacheConnectionError: If connection fails
        """
        async with self._connect_lock:
            if self._is_connected and self._client:
                return self._client
            return await self._open()

    async def _open(self) -> redis.Redis:
        try:
            # STAGE-REDIS.2.1: Create connection pool
            self._pool = ConnectionPool(
                host=self._settings.REDIS_HOST,
                port=self._settings.REDIS_PORT,
                db=self._settings.REDIS_DB,
                password=self._settings.REDIS_PASSWORD,
                max_connections=self._settings.REDIS_MAX_CONNECTIONS,
                socket_connect_timeout=self._settings.REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=self._settings.REDIS_SOCKET_TIMEOUT,
                retry_on_timeout=True,
                health_check_interval=self._settings.REDIS_HEALTH_CHECK_INTERVAL,
                decode_responses=True,
            )

            # STAGE-REDIS.2.2: Create Redis client with pool
            self._client = redis.Redis(connection_pool=self._pool)

            # STAGE-REDIS.2.3: Verify connection with ping
            await self._client.ping()

            self._is_connected = True

            logger.info(
                "Redis connected successfully",
                stage="REDIS.2",
                host=self._settings.REDIS_HOST,
                port=self._settings.REDIS_PORT,
                max_connections=self._settings.REDIS_MAX_CONNECTIONS,
            )

            return self._client

        except (ConnectionError, TimeoutError, OSError) as e:
            logger.error("Failed to connect to Redis", stage="REDIS.2", error=str(e))
            if self._pool:
                await self._pool.disconnect()
            self._pool = None
            self._client = None
            raise CacheConnectionError(
                message=f"Failed to connect to Redis: {e}",
                details={
                    "host": self._settings.REDIS_HOST,
                    "port": self._settings.REDIS_PORT,
                },
            ) from e

    async def disconnect(self) -> None:
        """
        Close Redis connection and pool.

        STAGE-REDIS.3: Connection cleanup
        """
        if self._client:
            await self._client.aclose()

        if self._pool:
            await self._pool.disconnect()

        self._client = None
        self._pool = None
        self._is_connected = False

        logger.info("Redis disconnected", stage="REDIS.3")

    async def ping(self) -> bool:
        try:
            if self._client and self._is_connected:
                await self._client.ping()
                return True
        except RedisError:
            pass
        return False

    def get_client(self) -> redis.Redis | None:
        return self._client

    def get_pool(self) -> ConnectionPool | None:
        return self._pool

    def is_connected(self) -> bool:
        return self._is_connected


# =============================================================================
# LAYER 2: OPERATION EXECUTOR
# =============================================================================


class OperationExecutor:
    """
    Executes Redis operations with consistent error handling and key prefixing.

    Error Handling Strategy:
    - Catch RedisError exceptions
    - Log error with context (stage, key)
    - Raise CacheKeyError with details
    """

    def __init__(self, redis_client: redis.Redis, key_prefix: str = ""):
        self._redis = redis_client
        self._prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    # -------------------------------------------------------------------------
    # Key/Value Operations
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        """
        Get value from Redis.

        STAGE-REDIS.GET: Redis GET operation
        """
        try:
            return await self._redis.get(self._key(key))
        except RedisError as e:
            logger.error("Redis GET failed", stage="REDIS.GET", key=key, error=str(e))
            raise CacheKeyError(message=f"Redis GET failed: {e}", details={"key": key}) from e

    async def setex(self, key: str, value: str | bytes, ttl: int) -> bool:
        """
        Set value with expiry (SETEX).

        STAGE-REDIS.SETEX: Redis SETEX operation
        """
        try:
            return bool(await self._redis.setex(self._key(key), ttl, value))
        except RedisError as e:
            logger.error("Redis SETEX failed", stage="REDIS.SETEX", key=key, error=str(e))
            raise CacheKeyError(message=f"Redis SETEX failed: {e}", details={"key": key}) from e

    async def delete(self, *keys: str) -> int:
        """
        Delete keys from Redis.

        STAGE-REDIS.DEL: Redis DELETE operation
        """
        if not keys:
            return 0
        try:
            return await self._redis.delete(*(self._key(key) for key in keys))
        except RedisError as e:
            logger.error("Redis DELETE failed", stage="REDIS.DEL", keys=keys, error=str(e))
            raise CacheKeyError(message=f"Redis DELETE failed: {e}", details={"keys": keys}) from e

    async def delete_matching(self, match: str) -> int:
        """
        Delete every key matching ``match`` under the prefix.

        Uses SCAN + DEL in batches rather than FLUSHDB/KEYS so other
        tenants of the database and the server are left alone.
        """
        pattern = self._key(match)
        deleted = 0
        batch: list[str] = []
        try:
            async for raw_key in self._redis.scan_iter(match=pattern, count=SCAN_BATCH_SIZE):
                batch.append(raw_key)
                if len(batch) >= SCAN_BATCH_SIZE:
                    deleted += await self._redis.delete(*batch)
                    batch.clear()
            if batch:
                deleted += await self._redis.delete(*batch)
        except RedisError as e:
            logger.error("Redis SCAN/DEL failed", stage="REDIS.FLUSH", pattern=pattern, error=str(e))
            raise CacheKeyError(message=f"Redis flush failed: {e}", details={"pattern": pattern}) from e
        return deleted

    # -------------------------------------------------------------------------
    # List Operations (for queues)
    # -------------------------------------------------------------------------

    async def lpush(self, key: str, *values: str | bytes) -> int:
        """
        Push values to the left of a list.

        Use Case: Queue implementation (producer side)
        """
        try:
            return await self._redis.lpush(self._key(key), *values)
        except RedisError as e:
            logger.error("Redis LPUSH failed", stage="REDIS.LPUSH", key=key, error=str(e))
            raise CacheKeyError(message=f"Redis LPUSH failed: {e}", details={"key": key}) from e

    async def brpop(self, key: str, timeout: float) -> str | None:
        """
        Blocking pop from the right of a list.

        Use Case: Queue implementation (consumer side)

        Returns:
            Popped value or None if nothing arrived within ``timeout`` seconds
        """
        try:
            result = await self._redis.brpop([self._key(key)], timeout=timeout)
        except RedisError as e:
            logger.error("Redis BRPOP failed", stage="REDIS.BRPOP", key=key, error=str(e))
            raise CacheKeyError(message=f"Redis BRPOP failed: {e}", details={"key": key}) from e
        if result is None:
            return None
        _, value = result
        return value

    async def llen(self, key: str) -> int:
        try:
            return await self._redis.llen(self._key(key))
        except RedisError as e:
            logger.error("Redis LLEN failed", stage="REDIS.LLEN", key=key, error=str(e))
            raise CacheKeyError(message=f"Redis LLEN failed: {e}", details={"key": key}) from e


# =============================================================================
# LAYER 3: HEALTH MONITORING
# =============================================================================


class HealthMonitor:
    """
    Monitors Redis health and connection pool metrics.

    Metrics Tracked:
    - Connection status
    - Ping latency
    - Pool size and utilization
    - Pool exhaustion warnings (>80% utilized)
    """

    def __init__(self, connection_manager: ConnectionManager, settings: RedisSettings):
        self._conn_mgr = connection_manager
        self._settings = settings

    async def health_check(self) -> dict[str, Any]:
        """
        Perform health check on Redis connection.

        STAGE-REDIS.HEALTH: Redis health check

        Returns:
            Dict with health status and metrics
        """
        health = {
            "status": "healthy",
            "connected": self._conn_mgr.is_connected(),
            "host": self._settings.REDIS_HOST,
            "port": self._settings.REDIS_PORT,
            "pool_size": 0,
            "pool_utilization_pct": 0,
            "pool_warning": False,
            "ping_latency_ms": None,
        }

        try:
            client = self._conn_mgr.get_client()
            if not client:
                health["status"] = "unhealthy"
                health["error"] = "Client not initialized"
                return health

            start = time.perf_counter()
            await client.ping()
            health["ping_latency_ms"] = round((time.perf_counter() - start) * 1000, 2)

            pool = self._conn_mgr.get_pool()
            if pool:
                health["pool_size"] = pool.max_connections
                in_use = getattr(pool, "_in_use_connections", None)
                if in_use is not None and pool.max_connections:
                    utilization = 100.0 * len(in_use) / pool.max_connections
                    health["pool_utilization_pct"] = round(utilization, 1)
                    if utilization > 80:
                        health["pool_warning"] = True
                        logger.warning(
                            "Redis pool utilization high",
                            stage="REDIS.HEALTH",
                            pool_utilization=utilization,
                            max_connections=pool.max_connections,
                        )

        except RedisError as e:
            health["status"] = "unhealthy"
            health["error"] = str(e)

        return health


# =============================================================================
# LAYER 4: PUBLIC API
# =============================================================================


class RedisClient:
    """
    Async Redis client with connection pooling and health checks.

    Implements both remote store protocols (``RemoteKeyValueStore`` for the
    cache, ``RemoteListStore`` for the queue).

    Usage:
        client = RedisClient(settings.redis)
        await client.connect()

        await client.set_with_expiry("cache:greeting", "hola", ttl=300)
        value = await client.get("cache:greeting")

        await client.disconnect()
    """

    def __init__(self, settings: RedisSettings | None = None):
        """
        Initialize Redis client.

        STAGE-REDIS.1: Client initialization
        """
        self._settings = settings or RedisSettings()
        self._conn_mgr = ConnectionManager(self._settings)
        self._executor: OperationExecutor | None = None
        self._health_monitor = HealthMonitor(self._conn_mgr, self._settings)

        logger.info(
            "Redis client initialized",
            stage="REDIS.1",
            host=self._settings.REDIS_HOST,
            port=self._settings.REDIS_PORT,
            key_prefix=self._settings.REDIS_KEY_PREFIX,
        )

    @property
    def key_prefix(self) -> str:
        return self._settings.REDIS_KEY_PREFIX

    @property
    def is_connected(self) -> bool:
        return self._conn_mgr.is_connected()

    async def connect(self) -> None:
        """
        Establish connection to Redis.

        Raises:
            CacheConnectionError: If connection fails
        """
        client = await self._conn_mgr.connect()
        self._executor = OperationExecutor(client, self._settings.REDIS_KEY_PREFIX)

    async def disconnect(self) -> None:
        await self._conn_mgr.disconnect()
        self._executor = None

    async def ping(self) -> bool:
        return await self._conn_mgr.ping()

    def _require_executor(self) -> OperationExecutor:
        if self._executor is None:
            raise CacheConnectionError(
                message="Redis client is not connected",
                details={"host": self._settings.REDIS_HOST, "port": self._settings.REDIS_PORT},
            )
        return self._executor

    # -------------------------------------------------------------------------
    # Delegate to OperationExecutor
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        return await self._require_executor().get(key)

    async def set_with_expiry(self, key: str, value: str | bytes, ttl: int) -> bool:
        return await self._require_executor().setex(key, value, ttl)

    async def delete(self, *keys: str) -> int:
        return await self._require_executor().delete(*keys)

    async def flush_all(self, match: str = "*") -> int:
        """Delete every prefixed key matching ``match`` (never FLUSHDB)."""
        return await self._require_executor().delete_matching(match)

    async def lpush(self, key: str, *values: str | bytes) -> int:
        return await self._require_executor().lpush(key, *values)

    async def brpop(self, key: str, timeout: float) -> str | None:
        return await self._require_executor().brpop(key, timeout)

    async def llen(self, key: str) -> int:
        return await self._require_executor().llen(key)

    async def health_check(self) -> dict[str, Any]:
        return await self._health_monitor.health_check()
