"""
Core Module

Foundational components: configuration, logging, exceptions, metrics and
the resilience primitives.
"""

from .exceptions import (
    AgentFactoryNotRegisteredError,
    CacheConnectionError,
    CacheError,
    CacheKeyError,
    CircuitBreakerOpenError,
    CircuitBreakerTimeoutError,
    ConnectionPoolError,
    ConnectionPoolNotInitializedError,
    QueueError,
    QueueFullError,
    RetryableError,
    WAAgentError,
)
from .logging import (
    clear_session_id,
    get_logger,
    get_session_id,
    log_stage,
    set_session_id,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "set_session_id",
    "get_session_id",
    "clear_session_id",
    "log_stage",
    "WAAgentError",
    "CacheError",
    "CacheConnectionError",
    "CacheKeyError",
    "QueueError",
    "QueueFullError",
    "CircuitBreakerOpenError",
    "CircuitBreakerTimeoutError",
    "RetryableError",
    "ConnectionPoolError",
    "ConnectionPoolNotInitializedError",
    "AgentFactoryNotRegisteredError",
]
