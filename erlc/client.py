"""ER:LC API client.

:class:`ERLCClient` is the public entry point: typed endpoint methods on top
of a :class:`RequestPipeline` that owns rate limiting, retries, the optional
paced queue and the optional response cache.
"""

from typing import Any, Iterable, List, Optional

import httpx

from erlc.core.cache import CacheBackend, create_cache
from erlc.core.config import CacheConfig, ClientOptions, QueueConfig, RequestOptions
from erlc.core.http_client import create_http_client
from erlc.core.logging import get_logger
from erlc.core.rate_limiter import GLOBAL_BUCKET, RateLimiter
from erlc.exceptions import CacheBackendError
from erlc.models import CommandLog, JoinLog, KillLog, ModCallLog, Player, ServerStatus, Vehicle
from erlc.services.subscription import EventConfig, Subscription
from erlc.transport.pipeline import RequestPipeline
from erlc.transport.queue import RequestQueue

logger = get_logger(__name__)


class ERLCClient:
    """Async client for a single private server.

    Example:
        async with ERLCClient("server-key") as client:
            players = await client.get_players()
            await client.execute_command(":h Hello!")
    """

    def __init__(
        self,
        api_key: str,
        options: Optional[ClientOptions] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the client.

        Args:
            api_key: Server key sent as ``Server-Key``
            options: Client options (defaults are read from ``ERLC_*`` env vars)
            http_client: Shared httpx client; one is created and owned otherwise

        Raises:
            ValueError: If ``api_key`` is empty
        """
        if not api_key:
            raise ValueError("API key is required")

        options = options or ClientOptions()
        self.options = options.model_copy(update={"api_key": api_key})

        self.rate_limiter = RateLimiter()
        self.queue: Optional[RequestQueue] = None
        if self.options.queue is not None:
            self.queue = RequestQueue(self.options.queue.workers, self.options.queue.interval)

        self.cache: Optional[CacheBackend] = None
        if self.options.cache is not None and self.options.cache.enabled:
            self.cache = create_cache(self.options.cache)

        self._owns_http_client = http_client is None
        self.http_client = http_client or create_http_client(self.options)
        self.pipeline = RequestPipeline(
            self.http_client,
            self.options,
            self.rate_limiter,
            cache=self.cache,
            queue=self.queue,
        )
        self._closed = False

    async def __aenter__(self) -> "ERLCClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Read endpoints

    async def get_players(self, options: Optional[RequestOptions] = None) -> List[Player]:
        return Player.parse_list(await self.get("/server/players", options))

    async def get_command_logs(self, options: Optional[RequestOptions] = None) -> List[CommandLog]:
        return CommandLog.parse_list(await self.get("/server/commandlogs", options))

    async def get_mod_calls(self, options: Optional[RequestOptions] = None) -> List[ModCallLog]:
        return ModCallLog.parse_list(await self.get("/server/modcalls", options))

    async def get_kill_logs(self, options: Optional[RequestOptions] = None) -> List[KillLog]:
        return KillLog.parse_list(await self.get("/server/killlogs", options))

    async def get_join_logs(self, options: Optional[RequestOptions] = None) -> List[JoinLog]:
        return JoinLog.parse_list(await self.get("/server/joinlogs", options))

    async def get_vehicles(self, options: Optional[RequestOptions] = None) -> List[Vehicle]:
        return Vehicle.parse_list(await self.get("/server/vehicles", options))

    async def get_server(self, options: Optional[RequestOptions] = None) -> ServerStatus:
        """Get server information and player counts."""
        return ServerStatus.model_validate(await self.get("/server", options) or {})

    async def get_server_status(self, options: Optional[RequestOptions] = None) -> ServerStatus:
        return await self.get_server(options)

    async def get_queue(self, options: Optional[RequestOptions] = None) -> Any:
        """Get the Roblox IDs of players waiting in the join queue."""
        return await self.get("/server/queue", options)

    async def get_bans(self, options: Optional[RequestOptions] = None) -> Any:
        return await self.get("/server/bans", options)

    async def get_staff(self, options: Optional[RequestOptions] = None) -> Any:
        return await self.get("/server/staff", options)

    # Write endpoints

    async def execute_command(self, command: str) -> Any:
        """Run a server command, e.g. ``":h Hello"``."""
        return await self.post("/server/command", {"command": command})

    # Raw access

    async def get(self, path: str, options: Optional[RequestOptions] = None) -> Any:
        return await self.pipeline.get(path, options)

    async def post(self, path: str, data: Any = None) -> Any:
        return await self.pipeline.post(path, data)

    # Subscriptions

    def subscribe(self, event_types: Iterable[Any], config: Optional[EventConfig] = None) -> Subscription:
        """Create a (not yet started) subscription for the given event types."""
        return Subscription(self, config, event_types)

    def subscribe_with_config(self, config: EventConfig, *event_types: Any) -> Subscription:
        return self.subscribe(event_types, config)

    # Introspection and cache management

    def status(self) -> dict:
        """Report rate limit, queue and cache state."""
        window = self.rate_limiter.status(GLOBAL_BUCKET)
        stats = self.cache.stats() if self.cache is not None else None
        return {
            "rate_limiter": {"global": window.to_dict() if window else None},
            "queue": self.queue.status().to_dict() if self.queue is not None else None,
            "cache": stats.to_dict() if stats is not None else None,
        }

    async def clear_cache(self) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.clear()
        except CacheBackendError as e:
            logger.warning(f"Failed to clear cache: {e}")

    async def cache_size(self) -> int:
        if self.cache is None:
            return 0
        try:
            return await self.cache.size()
        except CacheBackendError as e:
            logger.warning(f"Failed to read cache size: {e}")
            return 0

    def get_cache_entry(self, key: str) -> Any:
        """Return the raw cached value for ``key`` (in-memory cache only), ignoring expiry."""
        if self.cache is None:
            return None
        try:
            entry = self.cache.get_raw_entry(key)
        except NotImplementedError:
            return None
        return entry.value if entry is not None else None

    def cache_keys(self) -> List[str]:
        if self.cache is None:
            return []
        try:
            return self.cache.keys()
        except NotImplementedError:
            return []

    async def close(self) -> None:
        """Release every resource the client holds. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        if self.queue is not None:
            await self.queue.shutdown()

        if self.cache is not None:
            try:
                await self.cache.close()
            except CacheBackendError as e:
                logger.warning(f"Failed to close cache backend: {e}")

        self.rate_limiter.clear_all()

        if self._owns_http_client:
            await self.http_client.aclose()
        logger.debug("ER:LC client closed")


def create_client(api_key: str, options: Optional[ClientOptions] = None, **kwargs) -> ERLCClient:
    """Create a client from options and/or keyword overrides.

    Example:
        client = create_client("server-key", timeout=5.0)
    """
    if kwargs:
        options = (options or ClientOptions()).model_copy(update=kwargs)
    return ERLCClient(api_key, options)


def new_client(api_key: str, options: Optional[ClientOptions] = None) -> ERLCClient:
    return create_client(api_key, options)


def new_client_with_queue(
    api_key: str,
    workers: int = 1,
    interval: float = 1.0,
    options: Optional[ClientOptions] = None,
) -> ERLCClient:
    return create_client(api_key, options, queue=QueueConfig(workers=workers, interval=interval))


def new_client_with_cache(
    api_key: str,
    ttl: float = 60.0,
    options: Optional[ClientOptions] = None,
) -> ERLCClient:
    """Create a client with caching and stale-on-error enabled.

    A Redis URL and key prefix already present in ``options.cache`` are kept.
    """
    return create_client(api_key, options, cache=_cache_config(ttl, options))


def new_client_with_queue_and_cache(
    api_key: str,
    workers: int = 1,
    interval: float = 1.0,
    ttl: float = 60.0,
    options: Optional[ClientOptions] = None,
) -> ERLCClient:
    return create_client(
        api_key,
        options,
        queue=QueueConfig(workers=workers, interval=interval),
        cache=_cache_config(ttl, options),
    )


def _cache_config(ttl: float, options: Optional[ClientOptions]) -> CacheConfig:
    existing = options.cache if options is not None else None
    return CacheConfig(
        enabled=True,
        ttl=ttl,
        stale_if_error=True,
        redis_url=existing.redis_url if existing else None,
        redis_key_prefix=existing.redis_key_prefix if existing else "",
    )
