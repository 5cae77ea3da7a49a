"""
Connection Pool Owner for the Relational Store and Redis.

STAGE-CP: Connection Pool Management
-------------------------------------
CP.1: PostgreSQL pool initialization (asyncpg, SELECT 1 probe)
CP.2: Redis client initialization (PING probe)
CP.3: Resource access
CP.4: Graceful shutdown
CP.5: Health monitoring

One ``ConnectionPool`` is built by the runtime context at startup and passed
to whatever needs a connection. Initializing a resource twice returns the
existing one; asking for a resource that was never initialized raises
``ConnectionPoolNotInitializedError`` right away.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import asyncpg

from wa_agent.core.config.constants import POOL_CLOSE_TIMEOUT
from wa_agent.core.config.settings import PostgresSettings, RedisSettings
from wa_agent.core.exceptions import ConnectionPoolError, ConnectionPoolNotInitializedError
from wa_agent.core.logging.logger import get_logger
from wa_agent.infrastructure.cache.redis_client import RedisClient

logger = get_logger(__name__)

T = TypeVar("T")


class ConnectionPool:
    """
    Owns the asyncpg pool and the Redis client for the process.

    Usage:
        pool = ConnectionPool()
        await pool.init_postgres(settings.postgres.DATABASE_URL, settings.postgres)
        await pool.init_redis(settings.redis)

        async with pool.get_postgres().acquire() as conn:
            await conn.fetch("SELECT ...")

        await pool.close()
    """

    def __init__(self):
        self._pg_pool: asyncpg.Pool | None = None
        self._redis: RedisClient | None = None
        self._pg_max_size = 0

        # Concurrent init calls share one resource
        self._pg_lock = asyncio.Lock()
        self._redis_lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # CP.1 / CP.2: Initialization
    # -------------------------------------------------------------------------

    async def init_postgres(self, dsn: str, config: PostgresSettings | None = None) -> asyncpg.Pool:
        """
        Create the asyncpg pool and verify it with ``SELECT 1``.

        Raises:
            ConnectionPoolError: pool creation or probe failed
        """
        async with self._pg_lock:
            if self._pg_pool is not None:
                logger.warning("PostgreSQL pool already initialized", stage="CP.1")
                return self._pg_pool
            return await self._create_postgres(dsn, config or PostgresSettings())

    async def _create_postgres(self, dsn: str, config: PostgresSettings) -> asyncpg.Pool:
        try:
            pool = await asyncpg.create_pool(
                dsn=dsn,
                min_size=config.PG_MIN_CONNECTIONS,
                max_size=config.PG_MAX_CONNECTIONS,
                max_inactive_connection_lifetime=config.PG_IDLE_TIMEOUT,
                timeout=config.PG_CONNECT_TIMEOUT,
                ssl="require" if config.PG_SSL else None,
            )
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as e:
            logger.error("Failed to create PostgreSQL pool", stage="CP.1", error=str(e))
            raise ConnectionPoolError(
                message=f"Failed to create PostgreSQL pool: {e}",
                details={"resource": "postgres", "error_type": type(e).__name__},
            ) from e

        try:
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as e:
            pool.terminate()
            logger.error("PostgreSQL probe failed", stage="CP.1", error=str(e))
            raise ConnectionPoolError(
                message=f"PostgreSQL probe failed: {e}",
                details={"resource": "postgres", "error_type": type(e).__name__},
            ) from e

        self._pg_pool = pool
        self._pg_max_size = config.PG_MAX_CONNECTIONS

        logger.info(
            "PostgreSQL pool initialized",
            stage="CP.1",
            max_connections=config.PG_MAX_CONNECTIONS,
            idle_timeout=config.PG_IDLE_TIMEOUT,
        )
        return pool

    async def init_redis(self, config: RedisSettings | None = None) -> RedisClient:
        """
        Connect the Redis client (the connect includes a PING).

        Raises:
            CacheConnectionError: Redis unreachable
        """
        async with self._redis_lock:
            if self._redis is not None:
                logger.warning("Redis client already initialized", stage="CP.2")
                return self._redis

            client = RedisClient(config)
            await client.connect()
            self._redis = client

        logger.info("Redis client ready", stage="CP.2", key_prefix=client.key_prefix)
        return client

    # -------------------------------------------------------------------------
    # CP.3: Access
    # -------------------------------------------------------------------------

    def get_postgres(self) -> asyncpg.Pool:
        if self._pg_pool is None:
            raise ConnectionPoolNotInitializedError("PostgreSQL pool")
        return self._pg_pool

    def get_redis(self) -> RedisClient:
        if self._redis is None:
            raise ConnectionPoolNotInitializedError("Redis client")
        return self._redis

    @property
    def has_postgres(self) -> bool:
        return self._pg_pool is not None

    @property
    def has_redis(self) -> bool:
        return self._redis is not None

    # -------------------------------------------------------------------------
    # CP.4: Shutdown
    # -------------------------------------------------------------------------

    async def close(self, timeout: float = POOL_CLOSE_TIMEOUT) -> None:
        """
        Close both resources.

        The asyncpg pool is closed gracefully (waits for acquired connections
        to be released) for up to ``timeout`` seconds, then terminated.
        """
        if self._pg_pool is not None:
            pool = self._pg_pool
            self._pg_pool = None
            try:
                await asyncio.wait_for(pool.close(), timeout=timeout)
                logger.info("PostgreSQL pool closed", stage="CP.4")
            except asyncio.TimeoutError:
                logger.warning(
                    "PostgreSQL pool did not drain in time, terminating",
                    stage="CP.4",
                    timeout=timeout,
                )
                pool.terminate()

        if self._redis is not None:
            client = self._redis
            self._redis = None
            await client.disconnect()

        logger.info("Connection pools closed", stage="CP.4")

    # -------------------------------------------------------------------------
    # CP.5: Monitoring
    # -------------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        postgres: dict[str, Any] = {"initialized": self._pg_pool is not None}
        if self._pg_pool is not None:
            size = self._pg_pool.get_size()
            idle = self._pg_pool.get_idle_size()
            postgres.update(
                {
                    "size": size,
                    "idle": idle,
                    "in_use": size - idle,
                    "max_size": self._pg_max_size,
                }
            )

        return {
            "postgres": postgres,
            "redis": {
                "initialized": self._redis is not None,
                "connected": self._redis.is_connected if self._redis else False,
            },
        }

    async def health_check(self) -> dict[str, Any]:
        health: dict[str, Any] = {"status": "healthy", "postgres": None, "redis": None}

        if self._pg_pool is not None:
            try:
                start = time.perf_counter()
                async with self._pg_pool.acquire() as conn:
                    await conn.fetchval("SELECT 1")
                health["postgres"] = {
                    "status": "healthy",
                    "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                }
            except (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
                health["status"] = "degraded"
                health["postgres"] = {"status": "unhealthy", "error": str(e)}
        else:
            health["postgres"] = {"status": "not_initialized"}

        if self._redis is not None:
            redis_health = await self._redis.health_check()
            health["redis"] = redis_health
            if redis_health.get("status") != "healthy":
                health["status"] = "degraded"
        else:
            health["redis"] = {"status": "not_initialized"}

        return health


async def with_transaction(
    pool: asyncpg.Pool,
    callback: Callable[[asyncpg.Connection], Awaitable[T]],
) -> T:
    """
    Run ``callback(conn)`` inside a transaction.

    Commits when the callback returns, rolls back and re-raises when it
    raises; the connection goes back to the pool either way.
    """
    async with pool.acquire() as conn:
        async with conn.transaction():
            return await callback(conn)
