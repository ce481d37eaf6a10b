"""HTTP client construction.

The client either receives an ``httpx.AsyncClient`` from the caller (shared
connection pool, caller owns its lifecycle) or builds one here and closes it
on ``close()``.
"""

from typing import Optional

import httpx

from erlc.core.config import ClientOptions


def create_http_client(options: Optional[ClientOptions] = None, **kwargs) -> httpx.AsyncClient:
    """Create a new HTTP client configured from client options.

    Note: The returned client should be closed when done:
        async with create_http_client() as client:
            ...

    Args:
        options: Client options; defaults to a fresh ``ClientOptions()``
        **kwargs: Extra keyword arguments forwarded to ``httpx.AsyncClient``

    Returns:
        A new httpx.AsyncClient instance
    """
    options = options or ClientOptions()

    # Disabling keep-alive means no idle connection is ever reused
    max_keepalive = options.max_keepalive_connections if options.keep_alive else 0

    config = {
        "timeout": httpx.Timeout(options.attempt_timeout),
        "limits": httpx.Limits(
            max_connections=options.max_connections,
            max_keepalive_connections=max_keepalive,
            keepalive_expiry=options.keepalive_expiry,
        ),
    }
    config.update(kwargs)
    return httpx.AsyncClient(**config)
