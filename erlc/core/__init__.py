"""Core utilities for the ER:LC client."""

from erlc.core.cache import (
    CacheBackend,
    CacheLookup,
    CacheStats,
    ConnectionState,
    InMemoryCache,
    RedisCache,
    create_cache,
)
from erlc.core.config import CacheConfig, ClientOptions, QueueConfig, RequestOptions, settings
from erlc.core.logging import get_logger, setup_logging
from erlc.core.rate_limiter import GLOBAL_BUCKET, RateLimiter, RateLimitWindow, WaitDecision

__all__ = [
    "CacheBackend",
    "CacheLookup",
    "CacheStats",
    "ConnectionState",
    "InMemoryCache",
    "RedisCache",
    "create_cache",
    "CacheConfig",
    "ClientOptions",
    "QueueConfig",
    "RequestOptions",
    "settings",
    "get_logger",
    "setup_logging",
    "GLOBAL_BUCKET",
    "RateLimiter",
    "RateLimitWindow",
    "WaitDecision",
]
