"""
Circuit Breaker Exceptions

All exceptions raised by the circuit breaker itself, as opposed to errors
coming out of the protected operation.
"""

from wa_agent.core.exceptions.base import WAAgentError


class CircuitBreakerError(WAAgentError):
    """Base exception for circuit breaker errors."""
    pass


class CircuitBreakerOpenError(CircuitBreakerError):
    """
    Raised when the circuit breaker is open (fail fast).

    The protected operation was NOT invoked. Callers use this type to tell
    "we refused to call the dependency" apart from "the dependency failed".

    The circuit moves to half-open once the reset timeout has elapsed, at
    which point one trial call is let through.
    """
    pass


class CircuitBreakerTimeoutError(CircuitBreakerError):
    """
    Raised when a call through the breaker exceeds the configured timeout.

    Counted as a failure in the rolling window. Unless the breaker cancels
    timed-out calls, the underlying operation may still complete later.
    """
    pass
