"""
Resilience Module

Error classification, retry with capped exponential backoff (tenacity), a
rolling-window circuit breaker, and their composition into named resilient
operations.
"""

from .circuit_breaker import BreakerEvent, CircuitBreaker, CircuitBreakerConfig, RollingWindow
from .error_classifier import ErrorClassifier, extract_status_code, is_retryable
from .resilient_operation import (
    MODEL_CALL_PROFILE,
    NOTIFICATION_PROFILE,
    ResilienceProfile,
    ResilientOperation,
    make_resilient,
    wrap_model_call,
    wrap_notification_sender,
)
from .retry_policy import RetryConfig, RetryPolicy

__all__ = [
    "BreakerEvent",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "RollingWindow",
    "ErrorClassifier",
    "extract_status_code",
    "is_retryable",
    "MODEL_CALL_PROFILE",
    "NOTIFICATION_PROFILE",
    "ResilienceProfile",
    "ResilientOperation",
    "make_resilient",
    "wrap_model_call",
    "wrap_notification_sender",
    "RetryConfig",
    "RetryPolicy",
]
