"""
Centralized Configuration Module using Pydantic Settings

Type-safe, environment-based configuration for the wa-agent runtime.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Easy testing with override mechanisms

Usage:
    from wa_agent.core.config.settings import get_settings

    settings = get_settings()
    redis_host = settings.redis.REDIS_HOST
"""

from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from wa_agent.core.config import constants as c

# Every section reads the process environment and .env on its own
_SECTION_CONFIG = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    case_sensitive=True,
    extra="ignore",
)


class RedisSettings(BaseSettings):
    """
    Redis configuration for the remote cache tier and the durable queue.

    STAGE-0.1: Redis connection configuration
    """

    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")
    REDIS_KEY_PREFIX: str = Field(default=c.REDIS_KEY_PREFIX, description="Prefix for every key")
    REDIS_MAX_CONNECTIONS: int = Field(default=50, description="Maximum pooled connections")
    REDIS_SOCKET_TIMEOUT: float = Field(default=5.0, description="Command timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: float = Field(default=10.0, description="Connect timeout in seconds")
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")

    model_config = _SECTION_CONFIG


class PostgresSettings(BaseSettings):
    """
    PostgreSQL (pgvector) connection pool configuration.

    STAGE-0.2: Relational store configuration
    """

    DATABASE_URL: str | None = Field(default=None, description="PostgreSQL DSN; pool disabled when unset")
    PG_MAX_CONNECTIONS: int = Field(default=c.POSTGRES_MAX_CONNECTIONS, description="Maximum pool size")
    PG_MIN_CONNECTIONS: int = Field(default=1, description="Connections opened at startup")
    PG_IDLE_TIMEOUT: float = Field(default=c.POSTGRES_IDLE_TIMEOUT, description="Idle connection lifetime")
    PG_CONNECT_TIMEOUT: float = Field(default=c.POSTGRES_CONNECT_TIMEOUT, description="Connect timeout")
    PG_SSL: bool = Field(default=False, description="Require TLS to the database")

    @model_validator(mode="after")
    def validate_pool_bounds(self):
        if self.PG_MIN_CONNECTIONS > self.PG_MAX_CONNECTIONS:
            raise ValueError("PG_MIN_CONNECTIONS must not exceed PG_MAX_CONNECTIONS")
        return self

    model_config = _SECTION_CONFIG


class CacheSettings(BaseSettings):
    """
    Two-tier cache configuration.

    STAGE-2: Cache sizing and TTL
    """

    CACHE_L1_MAX_SIZE: int = Field(default=c.L1_CACHE_MAX_SIZE, gt=0, description="L1 max entries")
    CACHE_DEFAULT_TTL: float = Field(default=c.L1_CACHE_DEFAULT_TTL, gt=0, description="Default TTL (seconds)")
    CACHE_STALE_WHILE_REVALIDATE: float = Field(
        default=c.L1_CACHE_STALE_WHILE_REVALIDATE, ge=0, description="Seconds an expired L1 entry may be served once while refreshed"
    )
    CACHE_NAMESPACE: str = Field(default=c.REDIS_KEY_CACHE_NAMESPACE, description="Remote key namespace")
    CACHE_REMOTE_ENABLED: bool = Field(default=True, description="Back L1 with Redis")

    model_config = _SECTION_CONFIG


class AgentPoolSettings(BaseSettings):
    """Warm agent pool configuration."""

    AGENT_POOL_MAX_SIZE: int = Field(default=c.AGENT_POOL_MAX_SIZE, gt=0, description="Max warm agents")
    AGENT_POOL_TTL: float = Field(default=c.AGENT_POOL_TTL, gt=0, description="Agent lifetime (seconds)")
    AGENT_POOL_CLEANUP_INTERVAL: float = Field(
        default=c.AGENT_POOL_CLEANUP_INTERVAL, gt=0, description="Sweep interval (seconds)"
    )

    model_config = _SECTION_CONFIG


class QueueSettings(BaseSettings):
    """Durable queue configuration."""

    QUEUE_NAME: str = Field(default=c.DEFAULT_QUEUE_NAME, description="Redis list key")
    QUEUE_BLOCK_TIMEOUT: int = Field(default=c.QUEUE_BLOCK_TIMEOUT, ge=1, description="BRPOP wait (seconds)")
    QUEUE_MAX_SIZE: int | None = Field(default=None, description="Reject enqueue at this depth")
    QUEUE_MAX_ATTEMPTS: int = Field(default=c.QUEUE_MAX_ATTEMPTS, ge=1, description="Consumer attempts")

    model_config = _SECTION_CONFIG


class ResilienceSettings(BaseSettings):
    """
    Defaults for resilient operations built without an explicit profile.

    STAGE-CB: Retry and circuit breaker thresholds
    """

    RETRY_RETRIES: int = Field(default=c.DEFAULT_RETRIES, ge=0)
    RETRY_MIN_TIMEOUT: float = Field(default=c.DEFAULT_RETRY_MIN_TIMEOUT, ge=0)
    RETRY_MAX_TIMEOUT: float = Field(default=c.DEFAULT_RETRY_MAX_TIMEOUT, ge=0)
    RETRY_FACTOR: float = Field(default=c.DEFAULT_RETRY_FACTOR, ge=1)

    CB_TIMEOUT: float | None = Field(default=c.DEFAULT_CB_TIMEOUT)
    CB_ERROR_THRESHOLD_PERCENTAGE: float = Field(default=c.DEFAULT_CB_ERROR_THRESHOLD_PERCENTAGE, ge=0, le=100)
    CB_RESET_TIMEOUT: float = Field(default=c.DEFAULT_CB_RESET_TIMEOUT, ge=0)
    CB_ROLLING_COUNT_TIMEOUT: float = Field(default=c.DEFAULT_CB_ROLLING_COUNT_TIMEOUT, gt=0)
    CB_ROLLING_COUNT_BUCKETS: int = Field(default=c.DEFAULT_CB_ROLLING_COUNT_BUCKETS, ge=1)
    CB_VOLUME_THRESHOLD: int = Field(default=c.DEFAULT_CB_VOLUME_THRESHOLD, ge=0)
    CB_COUNT_NON_RETRYABLE_FAILURES: bool = Field(default=True)
    CB_CANCEL_ON_TIMEOUT: bool = Field(default=True)

    @model_validator(mode="after")
    def validate_retry_bounds(self):
        if self.RETRY_MIN_TIMEOUT > self.RETRY_MAX_TIMEOUT:
            raise ValueError("RETRY_MIN_TIMEOUT must not exceed RETRY_MAX_TIMEOUT")
        return self

    model_config = _SECTION_CONFIG


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = _SECTION_CONFIG


class ApplicationSettings(BaseSettings):
    """General application settings."""

    ENVIRONMENT: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="wa-agent", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")

    model_config = _SECTION_CONFIG


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    Each section reads its own variables from the environment (and ``.env``),
    so ``REDIS_HOST=cache.internal`` lands in ``settings.redis.REDIS_HOST``.
    """

    redis: RedisSettings = Field(default_factory=RedisSettings)
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    agent_pool: AgentPoolSettings = Field(default_factory=AgentPoolSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    resilience: ResilienceSettings = Field(default_factory=ResilienceSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    app: ApplicationSettings = Field(default_factory=ApplicationSettings)

    @model_validator(mode="after")
    def validate_queue_block_timeout(self):
        # BRPOP blocks on the socket, so it must return before the read times out
        if self.queue.QUEUE_BLOCK_TIMEOUT >= self.redis.REDIS_SOCKET_TIMEOUT:
            raise ValueError("QUEUE_BLOCK_TIMEOUT must be less than REDIS_SOCKET_TIMEOUT")
        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the process-wide settings instance.

    Settings are read-only configuration, so a lazily built singleton is
    fine here; pools and caches are owned by ``RuntimeContext`` instead.
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """Re-read the environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings
