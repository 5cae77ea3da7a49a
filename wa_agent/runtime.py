"""
Runtime Context

Explicitly constructed owner of every process-wide resource: connection
pools, the two-tier cache, the durable queue, the warm agent pool and the
metrics collector. Built once at startup, closed at shutdown, and passed to
whatever needs it. Nothing here is created implicitly on first use.

Usage:
    async with RuntimeContext(get_settings()) as runtime:
        send = runtime.resilient(twilio.send_message, "whatsapp-send-message",
                                 profile=NOTIFICATION_PROFILE)
        await runtime.queue.enqueue(payload)
"""

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from wa_agent.core.config.settings import Settings, get_settings
from wa_agent.core.logging.logger import get_logger, setup_logging
from wa_agent.core.observability.metrics import MetricsCollector
from wa_agent.core.resilience.resilient_operation import ResilienceProfile, ResilientOperation
from wa_agent.infrastructure.agent_pool import AgentPool
from wa_agent.infrastructure.cache.cache_manager import TwoTierCache
from wa_agent.infrastructure.connection_pool import ConnectionPool
from wa_agent.infrastructure.message_queue.redis_queue import DurableQueue

logger = get_logger(__name__)

T = TypeVar("T")


class RuntimeContext:
    """
    Lifecycle owner for pools, cache, queue and agent pool.

    ``start()`` connects Redis (when the remote cache is enabled), connects
    PostgreSQL (when ``DATABASE_URL`` is set), builds the components and
    starts the agent sweeper. ``close()`` undoes it in reverse order.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
        configure_logging: bool = False,
    ):
        self.settings = settings or get_settings()
        self.metrics = metrics or MetricsCollector()
        self.connections = ConnectionPool()
        self._configure_logging = configure_logging

        self.cache: TwoTierCache | None = None
        self.queue: DurableQueue | None = None
        self.agent_pool: AgentPool | None = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> "RuntimeContext":
        if self._started:
            logger.warning("Runtime already started", stage="RT.START")
            return self

        if self._configure_logging:
            setup_logging(self.settings.logging.LOG_LEVEL, self.settings.logging.LOG_FORMAT)

        s = self.settings
        logger.info(
            "Starting runtime",
            stage="RT.START",
            environment=s.app.ENVIRONMENT,
            version=s.app.APP_VERSION,
        )

        try:
            redis_client = None
            if s.cache.CACHE_REMOTE_ENABLED:
                redis_client = await self.connections.init_redis(s.redis)

            if s.postgres.DATABASE_URL:
                await self.connections.init_postgres(s.postgres.DATABASE_URL, s.postgres)
        except Exception:
            await self.connections.close()
            raise

        self.cache = TwoTierCache(
            remote=redis_client,
            max_size=s.cache.CACHE_L1_MAX_SIZE,
            default_ttl=s.cache.CACHE_DEFAULT_TTL,
            namespace=s.cache.CACHE_NAMESPACE,
            metrics=self.metrics,
            stale_while_revalidate=s.cache.CACHE_STALE_WHILE_REVALIDATE,
        )

        if redis_client is not None:
            self.queue = DurableQueue(
                redis_client,
                queue_name=s.queue.QUEUE_NAME,
                block_timeout=s.queue.QUEUE_BLOCK_TIMEOUT,
                max_size=s.queue.QUEUE_MAX_SIZE,
                metrics=self.metrics,
            )

        self.agent_pool = AgentPool(
            max_size=s.agent_pool.AGENT_POOL_MAX_SIZE,
            ttl=s.agent_pool.AGENT_POOL_TTL,
            metrics=self.metrics,
        )
        self.agent_pool.start_cleanup(s.agent_pool.AGENT_POOL_CLEANUP_INTERVAL)

        self._started = True
        logger.info(
            "Runtime started",
            stage="RT.START",
            redis=self.connections.has_redis,
            postgres=self.connections.has_postgres,
        )
        return self

    async def close(self) -> None:
        if self.agent_pool is not None:
            await self.agent_pool.stop_cleanup()

        if self.cache is not None:
            await self.cache.wait_for_refreshes()

        await self.connections.close()

        self.cache = None
        self.queue = None
        self.agent_pool = None
        self._started = False
        logger.info("Runtime closed", stage="RT.STOP")

    async def __aenter__(self) -> "RuntimeContext":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def resilient(
        self,
        fn: Callable[..., Awaitable[T]],
        name: str,
        profile: ResilienceProfile | None = None,
        **options: Any,
    ) -> ResilientOperation[T]:
        """
        Wrap ``fn`` with this runtime's metrics attached.

        Without a profile the retry/breaker numbers come from the
        ``RETRY_*`` / ``CB_*`` settings.
        """
        profile = profile or ResilienceProfile.from_settings(self.settings.resilience)
        return ResilientOperation(fn, name, profile=profile, metrics=self.metrics, **options)

    async def health_check(self) -> dict[str, Any]:
        connections = await self.connections.health_check()
        health = {
            "status": connections["status"] if self._started else "stopped",
            "connections": connections,
            "cache": await self.cache.health_check() if self.cache else None,
            "agent_pool": self.agent_pool.stats() if self.agent_pool else None,
            "queue_depth": await self.queue.size() if self.queue else None,
        }
        return health
