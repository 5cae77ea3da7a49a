"""
Unit Tests for the Exception Hierarchy
"""

import pytest

from wa_agent.core.exceptions import (
    AgentFactoryNotRegisteredError,
    AgentPoolError,
    CacheConnectionError,
    CacheError,
    CircuitBreakerError,
    CircuitBreakerOpenError,
    CircuitBreakerTimeoutError,
    ConnectionPoolError,
    ConnectionPoolNotInitializedError,
    QueueError,
    QueueFullError,
    RetryableError,
    WAAgentError,
)


@pytest.mark.unit
class TestWAAgentError:
    def test_to_dict(self):
        error = WAAgentError("boom", session_id="whatsapp:+15550001111", details={"op": "send"})

        assert error.to_dict() == {
            "error_type": "WAAgentError",
            "message": "boom",
            "session_id": "whatsapp:+15550001111",
            "details": {"op": "send"},
        }

    def test_details_are_copied(self):
        details = {"a": 1}
        error = WAAgentError("boom", details=details)
        error.with_context(b=2)

        assert details == {"a": 1}
        assert error.details == {"a": 1, "b": 2}

    def test_from_exception_keeps_original(self):
        error = CacheConnectionError.from_exception(OSError("refused"), host="localhost")

        assert isinstance(error, CacheConnectionError)
        assert error.message == "refused"
        assert error.details["original_error"] == "OSError"
        assert error.details["host"] == "localhost"

    def test_repr_includes_details(self):
        assert "details=" in repr(WAAgentError("boom", details={"k": "v"}))


@pytest.mark.unit
class TestThemedExceptions:
    @pytest.mark.parametrize(
        "error_cls, parent",
        [
            (CircuitBreakerOpenError, CircuitBreakerError),
            (CircuitBreakerTimeoutError, CircuitBreakerError),
            (CacheConnectionError, CacheError),
            (QueueFullError, QueueError),
            (ConnectionPoolNotInitializedError, ConnectionPoolError),
            (AgentFactoryNotRegisteredError, AgentPoolError),
            (RetryableError, WAAgentError),
        ],
    )
    def test_hierarchy(self, error_cls, parent):
        assert issubclass(error_cls, parent)
        assert issubclass(error_cls, WAAgentError)

    def test_not_initialized_names_resource(self):
        error = ConnectionPoolNotInitializedError("PostgreSQL pool")

        assert str(error) == "PostgreSQL pool not initialized"
        assert error.resource == "PostgreSQL pool"

    def test_factory_not_registered_carries_session(self):
        error = AgentFactoryNotRegisteredError("s-1")

        assert error.session_id == "s-1"
        assert "s-1" in str(error)

    def test_retryable_error_fields(self):
        error = RetryableError("busy", retryable=False, status_code=503)

        assert error.retryable is False
        assert error.status_code == 503
