"""
Exception Module

Structured exception hierarchy for the wa-agent runtime.

Module Structure:
-----------------
- **base.py**: WAAgentError base class
- **circuit_breaker.py**: Circuit breaker rejections and timeouts
- **retry.py**: Errors carrying an explicit retry decision
- **cache.py**: Remote cache exceptions
- **queue.py**: Durable queue exceptions
- **connection_pool.py**: Connection pool lifecycle exceptions
- **agent_pool.py**: Warm agent pool exceptions

Usage:
------
```python
from wa_agent.core.exceptions import CircuitBreakerOpenError, QueueFullError
```
"""

from wa_agent.core.exceptions.agent_pool import AgentFactoryNotRegisteredError, AgentPoolError
from wa_agent.core.exceptions.base import WAAgentError
from wa_agent.core.exceptions.cache import CacheConnectionError, CacheError, CacheKeyError
from wa_agent.core.exceptions.circuit_breaker import (
    CircuitBreakerError,
    CircuitBreakerOpenError,
    CircuitBreakerTimeoutError,
)
from wa_agent.core.exceptions.connection_pool import (
    ConnectionPoolError,
    ConnectionPoolNotInitializedError,
)
from wa_agent.core.exceptions.queue import QueueConsumerError, QueueError, QueueFullError
from wa_agent.core.exceptions.retry import RetryableError

__all__ = [
    # Base
    "WAAgentError",
    # Circuit Breaker
    "CircuitBreakerError",
    "CircuitBreakerOpenError",
    "CircuitBreakerTimeoutError",
    # Retry
    "RetryableError",
    # Cache
    "CacheError",
    "CacheConnectionError",
    "CacheKeyError",
    # Queue
    "QueueError",
    "QueueFullError",
    "QueueConsumerError",
    # Connection Pool
    "ConnectionPoolError",
    "ConnectionPoolNotInitializedError",
    # Agent Pool
    "AgentPoolError",
    "AgentFactoryNotRegisteredError",
]
