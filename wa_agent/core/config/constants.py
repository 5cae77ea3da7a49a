"""
System Constants

Defaults and key layouts used across the wa-agent runtime. Durations are in
seconds unless the name says otherwise.
"""

from enum import Enum

# ============================================================================
# Circuit Breaker States
# ============================================================================


class CircuitState(str, Enum):
    """
    Circuit breaker states.

    CLOSED: Normal operation, requests allowed
    OPEN: Failing fast, requests blocked
    HALF_OPEN: Testing recovery, a single trial request allowed
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# ============================================================================
# Error Classification
# ============================================================================

NON_RETRYABLE_STATUS_CODES = frozenset({400, 401, 403, 404})
NON_RETRYABLE_ERROR_CODES = frozenset({"INVALID_INPUT", "AUTHENTICATION_FAILED"})


# ============================================================================
# Retry Defaults
# ============================================================================

DEFAULT_RETRIES = 3
DEFAULT_RETRY_MIN_TIMEOUT = 1.0
DEFAULT_RETRY_MAX_TIMEOUT = 10.0
DEFAULT_RETRY_FACTOR = 2.0


# ============================================================================
# Circuit Breaker Defaults
# ============================================================================

DEFAULT_CB_TIMEOUT = 30.0
DEFAULT_CB_ERROR_THRESHOLD_PERCENTAGE = 50.0
DEFAULT_CB_RESET_TIMEOUT = 30.0
DEFAULT_CB_ROLLING_COUNT_TIMEOUT = 10.0
DEFAULT_CB_ROLLING_COUNT_BUCKETS = 10
DEFAULT_CB_VOLUME_THRESHOLD = 5


# ============================================================================
# Resilience Profiles
# ============================================================================

# Outbound notifications: latency sensitive, an unhealthy channel fails fast
NOTIFICATION_RETRIES = 3
NOTIFICATION_RETRY_MIN_TIMEOUT = 2.0
NOTIFICATION_RETRY_MAX_TIMEOUT = 10.0
NOTIFICATION_CB_TIMEOUT = 15.0
NOTIFICATION_CB_ERROR_THRESHOLD_PERCENTAGE = 30.0
NOTIFICATION_CB_RESET_TIMEOUT = 60.0

# Model calls: slower and more variable
MODEL_CALL_RETRIES = 2
MODEL_CALL_RETRY_MIN_TIMEOUT = 3.0
MODEL_CALL_RETRY_MAX_TIMEOUT = 15.0
MODEL_CALL_CB_TIMEOUT = 60.0
MODEL_CALL_CB_ERROR_THRESHOLD_PERCENTAGE = 40.0
MODEL_CALL_CB_RESET_TIMEOUT = 120.0

NOTIFICATION_OPERATION_NAME = "whatsapp-send-message"
MODEL_CALL_OPERATION_PREFIX = "llm"


# ============================================================================
# Cache / Pool / Queue Defaults
# ============================================================================

REDIS_KEY_PREFIX = "wa-agent:"
REDIS_KEY_CACHE_NAMESPACE = "cache"
DEFAULT_QUEUE_NAME = "message-queue"

L1_CACHE_MAX_SIZE = 1000
L1_CACHE_DEFAULT_TTL = 300.0
L1_CACHE_STALE_WHILE_REVALIDATE = 0.0

AGENT_POOL_MAX_SIZE = 10
AGENT_POOL_TTL = 600.0
AGENT_POOL_CLEANUP_INTERVAL = 60.0

QUEUE_BLOCK_TIMEOUT = 1
QUEUE_MAX_ATTEMPTS = 3

POSTGRES_MAX_CONNECTIONS = 20
POSTGRES_IDLE_TIMEOUT = 30.0
POSTGRES_CONNECT_TIMEOUT = 10.0
POOL_CLOSE_TIMEOUT = 10.0

# Keep only the most recent samples per timed operation
METRICS_MAX_SAMPLES = 1000
