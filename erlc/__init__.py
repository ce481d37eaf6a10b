"""Async client for the Police Roleplay Community (ER:LC) private server API."""

from erlc.client import (
    ERLCClient,
    create_client,
    new_client,
    new_client_with_cache,
    new_client_with_queue,
    new_client_with_queue_and_cache,
)
from erlc.core.cache import InMemoryCache, RedisCache
from erlc.core.config import CacheConfig, ClientOptions, QueueConfig, RequestOptions
from erlc.core.rate_limiter import RateLimiter
from erlc.exceptions import (
    CacheBackendError,
    ERLCAPIError,
    ERLCError,
    ERLCNetworkError,
    ERLCResponseParseError,
    ErrorCode,
    QueueClearedError,
    RequestCancelledError,
    get_friendly_error_message,
    is_private_server_offline_error,
)
from erlc.models import (
    CommandLog,
    JoinLog,
    KillLog,
    ModCallLog,
    Player,
    PlayerChange,
    ServerStatus,
    Vehicle,
    VehicleChange,
)
from erlc.services.helpers import PRCHelpers
from erlc.services.subscription import EventConfig, EventType, Subscription
from erlc.transport.queue import RequestQueue

__version__ = "0.1.0"

__all__ = [
    "ERLCClient",
    "create_client",
    "new_client",
    "new_client_with_cache",
    "new_client_with_queue",
    "new_client_with_queue_and_cache",
    "InMemoryCache",
    "RedisCache",
    "CacheConfig",
    "ClientOptions",
    "QueueConfig",
    "RequestOptions",
    "RateLimiter",
    "RequestQueue",
    "CacheBackendError",
    "ERLCAPIError",
    "ERLCError",
    "ERLCNetworkError",
    "ERLCResponseParseError",
    "ErrorCode",
    "QueueClearedError",
    "RequestCancelledError",
    "get_friendly_error_message",
    "is_private_server_offline_error",
    "CommandLog",
    "JoinLog",
    "KillLog",
    "ModCallLog",
    "Player",
    "PlayerChange",
    "ServerStatus",
    "Vehicle",
    "VehicleChange",
    "PRCHelpers",
    "EventConfig",
    "EventType",
    "Subscription",
]
