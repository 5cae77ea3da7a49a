"""
Warm Agent Pool.

STAGE-AP: Agent Pool
--------------------
AP.1: Factory registration
AP.2: Agent lookup / construction
AP.3: Capacity eviction
AP.4: Expiry sweep

Keeps at most ``max_size`` constructed agents, one per session, each reused
until it is ``ttl`` seconds old. Construction for one session is serialized
by a per-session lock, so concurrent requests for a cold session build the
agent once. Entries are replaced whole, never mutated.
"""

import asyncio
import inspect
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from wa_agent.core.config.constants import AGENT_POOL_CLEANUP_INTERVAL, AGENT_POOL_MAX_SIZE, AGENT_POOL_TTL
from wa_agent.core.exceptions import AgentFactoryNotRegisteredError
from wa_agent.core.logging.logger import get_logger
from wa_agent.core.observability.metrics import MetricsCollector

logger = get_logger(__name__)

AgentFactory = Callable[[], Any | Awaitable[Any]]


@dataclass(frozen=True)
class PooledAgent:
    agent: Any
    created_at: float


class AgentPool:
    """
    Bounded pool of warm agents keyed by session id.

    Usage:
        pool = AgentPool(max_size=10, ttl=600)
        pool.register_factory("whatsapp:+15550001111", lambda: build_agent(tenant))
        agent = await pool.get_agent("whatsapp:+15550001111")
    """

    def __init__(
        self,
        max_size: int = AGENT_POOL_MAX_SIZE,
        ttl: float = AGENT_POOL_TTL,
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsCollector | None = None,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._ttl = ttl
        self._clock = clock
        self._metrics = metrics

        # Insertion order doubles as age order for eviction
        self._agents: OrderedDict[str, PooledAgent] = OrderedDict()
        self._factories: dict[str, AgentFactory] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._cleanup_task: asyncio.Task | None = None

        self._created = 0
        self._reused = 0
        self._evicted = 0
        self._expired = 0

    # -------------------------------------------------------------------------
    # AP.1: Registration
    # -------------------------------------------------------------------------

    def register_factory(self, session_id: str, factory: AgentFactory) -> None:
        """Register (or replace) the builder used for ``session_id``."""
        self._factories[session_id] = factory
        logger.debug("Agent factory registered", stage="AP.1", session_id=session_id)

    def unregister(self, session_id: str) -> None:
        """Forget the factory and drop any pooled agent for ``session_id``."""
        self._factories.pop(session_id, None)
        self._locks.pop(session_id, None)
        if self._agents.pop(session_id, None) is not None:
            self._report_size()

    # -------------------------------------------------------------------------
    # AP.2: Lookup
    # -------------------------------------------------------------------------

    def _is_fresh(self, entry: PooledAgent) -> bool:
        return self._clock() - entry.created_at < self._ttl

    async def get_agent(self, session_id: str) -> Any:
        """
        Return the warm agent for a session, building it if missing or stale.

        Raises:
            AgentFactoryNotRegisteredError: no factory for ``session_id``
            Exception: whatever the factory raised (nothing is pooled)
        """
        entry = self._agents.get(session_id)
        if entry is not None and self._is_fresh(entry):
            self._reused += 1
            return entry.agent

        if session_id not in self._factories:
            raise AgentFactoryNotRegisteredError(session_id)

        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            # Another caller may have built it while we waited
            entry = self._agents.get(session_id)
            if entry is not None and self._is_fresh(entry):
                self._reused += 1
                return entry.agent

            factory = self._factories.get(session_id)
            if factory is None:
                raise AgentFactoryNotRegisteredError(session_id)

            agent = factory()
            if inspect.isawaitable(agent):
                agent = await agent

            self._store(session_id, agent)
            return agent

    def _store(self, session_id: str, agent: Any) -> None:
        if session_id in self._agents:
            del self._agents[session_id]
            self._expired += 1
            logger.debug("Stale agent replaced", stage="AP.2", session_id=session_id)

        # AP.3: evict the oldest entry at capacity
        while len(self._agents) >= self._max_size:
            evicted_id, _ = self._agents.popitem(last=False)
            self._evicted += 1
            logger.info(
                "Agent evicted at capacity",
                stage="AP.3",
                session_id=evicted_id,
                max_size=self._max_size,
            )

        self._agents[session_id] = PooledAgent(agent=agent, created_at=self._clock())
        self._created += 1
        self._report_size()
        logger.info("Agent created", stage="AP.2", session_id=session_id, pool_size=len(self._agents))

    # -------------------------------------------------------------------------
    # AP.4: Expiry
    # -------------------------------------------------------------------------

    def cleanup(self) -> int:
        """
        Drop every agent older than the TTL.

        Returns:
            Number of agents removed
        """
        stale = [sid for sid, entry in self._agents.items() if not self._is_fresh(entry)]
        for session_id in stale:
            del self._agents[session_id]

        if stale:
            self._expired += len(stale)
            self._report_size()
            logger.info("Expired agents removed", stage="AP.4", removed=len(stale), pool_size=len(self._agents))
        return len(stale)

    async def _cleanup_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.cleanup()

    def start_cleanup(self, interval: float = AGENT_POOL_CLEANUP_INTERVAL) -> None:
        """Sweep expired agents every ``interval`` seconds in the background."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(interval))
        logger.info("Agent pool sweeper started", stage="AP.4", interval=interval)

    async def stop_cleanup(self) -> None:
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        await asyncio.gather(self._cleanup_task, return_exceptions=True)
        self._cleanup_task = None
        logger.info("Agent pool sweeper stopped", stage="AP.4")

    # -------------------------------------------------------------------------
    # Monitoring
    # -------------------------------------------------------------------------

    def size(self) -> int:
        return len(self._agents)

    def _report_size(self) -> None:
        if self._metrics:
            self._metrics.set_agent_pool_size(len(self._agents))

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._agents),
            "max_size": self._max_size,
            "ttl": self._ttl,
            "registered_factories": len(self._factories),
            "created": self._created,
            "reused": self._reused,
            "evicted": self._evicted,
            "expired": self._expired,
        }
