"""Request pipeline for the PRC API.

:class:`RequestPipeline` performs one logical API call reliably: it honours
the tracked rate limit window, retries transient failures with backoff,
waits out 429 responses, translates failures into :class:`ERLCAPIError`
and, for reads, serves and fills the response cache.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from erlc.core.cache import MISS, CacheBackend, CacheLookup
from erlc.core.config import CacheConfig, ClientOptions, RequestOptions
from erlc.core.logging import get_log_context, get_logger
from erlc.core.rate_limiter import GLOBAL_BUCKET, RateLimiter
from erlc.core.tracing import TraceContext, current_or_new_trace
from erlc.exceptions import (
    CacheBackendError,
    ERLCAPIError,
    ERLCError,
    ERLCNetworkError,
    ERLCResponseParseError,
    ErrorCode,
    truncate_body,
)
from erlc.transport.queue import RequestQueue
from erlc.transport.retry import RetryPolicy, parse_retry_after

logger = get_logger(__name__)

# Failures raised by the HTTP layer that are translated into ERLCNetworkError
TRANSPORT_ERRORS = (httpx.HTTPError, asyncio.TimeoutError, OSError)

_NO_STALE = object()


@dataclass(frozen=True)
class RequestContext:
    """Identifies the request an error or log line belongs to."""

    method: str
    path: str
    url: str

    def to_dict(self) -> dict:
        return {"method": self.method, "path": self.path, "url": self.url}


class RequestPipeline:
    """Executes API calls with rate limiting, retries and caching.

    Example:
        pipeline = RequestPipeline(http_client, options, RateLimiter())
        players = await pipeline.get("/server/players")
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        options: ClientOptions,
        rate_limiter: RateLimiter,
        cache: Optional[CacheBackend] = None,
        queue: Optional[RequestQueue] = None,
        retry_policy: Optional[RetryPolicy] = None,
        bucket: str = GLOBAL_BUCKET,
    ):
        """Initialize the pipeline.

        Args:
            http_client: Shared httpx client
            options: Client options (credentials, base URL, timeouts)
            rate_limiter: Rate limit tracker updated from every response
            cache: Response cache for reads (None disables caching)
            queue: Optional paced queue every call is routed through
            retry_policy: Retry configuration (defaults from ``options``)
            bucket: Rate limit bucket used for all calls
        """
        self.http_client = http_client
        self.options = options
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.cache_config = options.cache or CacheConfig()
        self.queue = queue
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=options.max_retries,
            base_delay=options.retry_base_delay,
        )
        self.bucket = bucket

    @property
    def attempt_timeout(self) -> float:
        return self.options.attempt_timeout

    async def sleep(self, seconds: float) -> None:
        """Suspend the current call (rate limit waits and backoff)."""
        await asyncio.sleep(seconds)

    def cache_key(self, path: str) -> str:
        return f"{self.cache_config.prefix}{path}"

    def context(self, method: str, path: str) -> RequestContext:
        return RequestContext(method=method, path=path, url=f"{self.options.base_url}{path}")

    def build_headers(self, attempt: int, span: Optional[TraceContext] = None) -> dict:
        """Build request headers for one attempt.

        Args:
            attempt: Zero-based attempt number
            span: Trace context of this attempt

        Returns:
            Header dictionary
        """
        headers = {
            "Server-Key": self.options.api_key,
            "Content-Type": "application/json",
        }
        if self.options.global_key:
            headers["Authorization"] = self.options.global_key
        # Retries always open a fresh connection
        if not self.options.keep_alive or attempt > 0:
            headers["Connection"] = "close"
        if span is not None:
            headers["traceparent"] = span.to_traceparent()
        return headers

    async def get(self, path: str, options: Optional[RequestOptions] = None) -> Any:
        """Perform a read, serving from and filling the cache.

        Args:
            path: API path, e.g. ``/server/players``
            options: Per-call cache overrides

        Returns:
            Parsed JSON body (None for an empty body)

        Raises:
            ERLCAPIError: When the call fails and no stale value may be served
        """
        options = options or RequestOptions()
        use_cache = self.cache is not None and options.cache is not False
        stale_if_error = self.cache_config.stale_if_error
        key = self.cache_key(path)
        ttl = self._resolve_ttl(options)
        stale: Any = _NO_STALE

        if use_cache:
            lookup = await self._cache_lookup(key, allow_stale=stale_if_error)
            if lookup.found and not lookup.is_stale:
                logger.debug(f"Cache hit for {path}")
                return lookup.value
            if lookup.found:
                stale = lookup.value
            logger.debug(f"Cache miss for {path}")

        context = self.context("GET", path)

        async def execute() -> Any:
            response = await self.send("GET", path)
            data = await self.handle_response(response, context)
            if use_cache:
                await self._cache_store(key, data, ttl)
            return data

        try:
            return await self._run(execute)
        except ERLCError as e:
            if stale_if_error and stale is not _NO_STALE:
                logger.warning(
                    f"Serving stale cached value for {path} after error: {e}",
                    extra=get_log_context(method="GET", path=path),
                )
                return stale
            raise

    async def post(self, path: str, data: Any = None) -> Any:
        """Perform a write. The cache is neither read nor written."""
        context = self.context("POST", path)

        async def execute() -> Any:
            response = await self.send("POST", path, data)
            return await self.handle_response(response, context)

        return await self._run(execute)

    async def send(self, method: str, path: str, data: Any = None) -> httpx.Response:
        """Send a request, retrying transient failures.

        Every attempt first waits out an exhausted rate limit window, then
        runs under its own timeout. 429 responses are retried after the
        server-directed wait, 502/503/504 and retryable transport errors
        after exponential backoff; all share one attempt budget.

        Returns:
            The final response, which may still be a failure status

        Raises:
            ERLCNetworkError: Transport failure that was not retryable or
                exhausted the attempt budget
        """
        policy = self.retry_policy
        url = f"{self.options.base_url}{path}"
        trace = current_or_new_trace()
        response: Optional[httpx.Response] = None

        for attempt in range(policy.max_attempts):
            decision = self.rate_limiter.should_wait(self.bucket)
            if decision.should_wait:
                logger.debug(f"Rate limit window exhausted, waiting {decision.duration:.2f}s before {method} {path}")
                await self.sleep(decision.duration)

            span = trace.create_child()
            log_context = get_log_context(
                trace_id=span.trace_id,
                span_id=span.span_id,
                method=method,
                path=path,
                attempt=attempt + 1,
            )
            is_last = attempt >= policy.max_retries

            start = time.monotonic()
            try:
                response = await asyncio.wait_for(
                    self._attempt(method, url, data, attempt, span),
                    timeout=self.attempt_timeout,
                )
            except TRANSPORT_ERRORS as e:
                if not is_last and policy.is_retryable(e):
                    delay = policy.calculate_delay(attempt)
                    logger.warning(
                        f"{method} {path} failed (attempt {attempt + 1}/{policy.max_attempts}): "
                        f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s...",
                        extra=log_context,
                    )
                    await self.sleep(delay)
                    continue
                logger.error(
                    f"{method} {path} failed after {attempt + 1} attempt(s): {type(e).__name__}: {e}",
                    extra=log_context,
                )
                raise ERLCNetworkError(
                    f"Request failed: {type(e).__name__}: {e}",
                    method=method,
                    path=path,
                    url=url,
                ) from e

            duration_ms = (time.monotonic() - start) * 1000
            logger.debug(
                f"{method} {path} -> {response.status_code} ({duration_ms:.1f}ms)",
                extra={**log_context, "status_code": response.status_code, "duration_ms": round(duration_ms, 2)},
            )

            self.rate_limiter.update_from_headers(self.bucket, response.headers)

            if response.status_code == 429:
                wait = parse_retry_after(response.headers, _parse_json(response.text))
                self.rate_limiter.record_window(self.bucket, 0, 0, time.time() + wait)
                if is_last:
                    return response
                logger.warning(
                    f"Rate limited on {method} {path} (attempt {attempt + 1}/{policy.max_attempts}). "
                    f"Retrying in {wait:.2f}s...",
                    extra={**log_context, "status_code": 429},
                )
                await self.sleep(wait)
                continue

            if policy.is_retryable_status(response.status_code) and not is_last:
                delay = policy.calculate_delay(attempt)
                logger.warning(
                    f"{method} {path} returned {response.status_code} "
                    f"(attempt {attempt + 1}/{policy.max_attempts}). Retrying in {delay:.2f}s...",
                    extra={**log_context, "status_code": response.status_code},
                )
                await self.sleep(delay)
                continue

            return response

        # Only reachable with a zero-attempt policy
        raise ERLCNetworkError("Request was not attempted", method=method, path=path, url=url)

    async def handle_response(self, response: httpx.Response, context: RequestContext) -> Any:
        """Translate a final response into data or an error.

        Returns:
            Parsed JSON body, or None for an empty success body

        Raises:
            ERLCAPIError: For any non-2xx response
            ERLCResponseParseError: When a success body is not valid JSON
        """
        raw_text = response.text

        if response.status_code == 429:
            parsed = _parse_json(raw_text)
            body = parsed if isinstance(parsed, dict) else {
                "code": ErrorCode.RATE_LIMITED,
                "message": "Rate limited",
            }
            raise ERLCAPIError.from_response(
                response,
                body,
                context.to_dict(),
                raw_text,
                retry_after=parse_retry_after(response.headers, body),
            )

        if not response.is_success:
            raise ERLCAPIError.from_response(response, _parse_json(raw_text), context.to_dict(), raw_text)

        if not raw_text.strip():
            return None

        try:
            return json.loads(raw_text)
        except ValueError as e:
            raise ERLCResponseParseError(
                f"Failed to parse response from {context.method} {context.path}: {e}",
                status=response.status_code,
                status_text=response.reason_phrase,
                method=context.method,
                path=context.path,
                url=context.url,
                response_body=truncate_body(raw_text),
            ) from e

    async def _attempt(
        self,
        method: str,
        url: str,
        data: Any,
        attempt: int,
        span: TraceContext,
    ) -> httpx.Response:
        kwargs = {}
        if data is not None:
            kwargs["json"] = data
        return await self.http_client.request(
            method,
            url,
            headers=self.build_headers(attempt, span),
            timeout=self.attempt_timeout,
            **kwargs,
        )

    async def _run(self, execute: Callable[[], Awaitable[Any]]) -> Any:
        if self.queue is not None:
            return await self.queue.enqueue(execute)
        return await execute()

    def _resolve_ttl(self, options: RequestOptions) -> float:
        if options.cache_ttl is not None and options.cache_ttl >= 0:
            return options.cache_ttl
        return self.cache_config.ttl

    async def _cache_lookup(self, key: str, allow_stale: bool) -> CacheLookup:
        try:
            return await self.cache.get(key, allow_stale=allow_stale)
        except CacheBackendError as e:
            logger.warning(f"Cache lookup failed for {key}, treating as miss: {e}")
            return MISS

    async def _cache_store(self, key: str, value: Any, ttl: float) -> None:
        try:
            await self.cache.set(key, value, ttl)
        except CacheBackendError as e:
            logger.warning(f"Cache store failed for {key}: {e}")


def _parse_json(text: str) -> Any:
    if not text or not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None
