"""Client configuration.

Options can be passed explicitly or loaded from ``ERLC_*`` environment
variables (and a ``.env`` file). Nested sections use ``__`` as delimiter,
e.g. ``ERLC_CACHE__ENABLED=true`` or ``ERLC_QUEUE__WORKERS=2``.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BASE_URL = "https://api.policeroleplay.community/v1"

# Per-attempt HTTP timeouts are never shorter than this
MIN_ATTEMPT_TIMEOUT = 2.0


class QueueConfig(BaseModel):
    """Request queue settings.

    Attributes:
        workers: Number of concurrent worker loops (at least 1)
        interval: Pause in seconds each worker takes between jobs
    """

    workers: int = Field(default=1, ge=1)
    interval: float = Field(default=1.0, ge=0)


class CacheConfig(BaseModel):
    """Response cache settings.

    Attributes:
        enabled: Whether GET responses are cached at all
        ttl: Default time-to-live in seconds (<= 0 means never expire)
        stale_if_error: Serve an expired cached value when a refresh fails
        max_items: Capacity of the in-memory store
        prefix: Prefix prepended to request paths to build cache keys
        redis_url: When set, use Redis instead of the in-memory store
        redis_key_prefix: Namespace for keys stored in Redis
        sweep_interval: Seconds between background expiry sweeps (in-memory)
    """

    enabled: bool = False
    ttl: float = 60.0
    stale_if_error: bool = False
    max_items: int = Field(default=1000, ge=1)
    prefix: str = "erlc:"
    redis_url: Optional[str] = None
    redis_key_prefix: str = ""
    sweep_interval: float = 60.0


class RequestOptions(BaseModel):
    """Per-call overrides for read requests.

    Attributes:
        cache: ``False`` bypasses the cache for this call, ``None`` follows the client
        cache_ttl: TTL override in seconds; negative values are ignored
    """

    cache: Optional[bool] = None
    cache_ttl: Optional[float] = None


class ClientOptions(BaseSettings):
    """Client settings loaded from arguments or environment variables."""

    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    global_key: Optional[str] = None

    # HTTP settings
    timeout: float = 10.0
    keep_alive: bool = True
    max_connections: int = 20
    max_keepalive_connections: int = 10
    keepalive_expiry: float = 30.0

    # Retry settings
    max_retries: int = 3
    retry_base_delay: float = 1.0

    # Optional subsystems
    queue: Optional[QueueConfig] = None
    cache: Optional[CacheConfig] = None

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    model_config = SettingsConfigDict(
        env_prefix="ERLC_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Strip trailing slashes and reject empty URLs."""
        v = v.strip().rstrip("/")
        if not v:
            raise ValueError("base_url must not be empty")
        return v

    @field_validator("timeout", "keepalive_expiry")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_retries must not be negative")
        return v

    @field_validator("max_connections", "max_keepalive_connections")
    @classmethod
    def validate_pool_limits(cls, v: int) -> int:
        if v < 0:
            raise ValueError("connection pool limits must not be negative")
        return v

    @property
    def attempt_timeout(self) -> float:
        """Timeout applied to each individual HTTP attempt."""
        return max(MIN_ATTEMPT_TIMEOUT, self.timeout)


# Global settings instance
settings = ClientOptions()
