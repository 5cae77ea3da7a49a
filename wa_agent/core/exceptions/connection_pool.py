"""
Connection Pool Exception Types.

Custom exceptions for relational store / remote cache connection management.
"""

from wa_agent.core.exceptions.base import WAAgentError


class ConnectionPoolError(WAAgentError):
    """Base exception for connection pool errors."""

    def __init__(
        self,
        message: str = "Connection pool error",
        details: dict | None = None
    ):
        super().__init__(message=message, details=details)


class ConnectionPoolNotInitializedError(ConnectionPoolError):
    """Raised when a pooled resource is requested before it was initialized."""

    def __init__(self, resource: str, details: dict | None = None):
        super().__init__(
            message=f"{resource} not initialized",
            details=details or {"resource": resource}
        )
        self.resource = resource
