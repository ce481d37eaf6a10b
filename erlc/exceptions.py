"""Custom exceptions for the ER:LC API client.

Every error raised by the library derives from :class:`ERLCError`. Failed
requests surface as :class:`ERLCAPIError`, which carries the application
error code, the HTTP status and enough request context to log or branch on.
"""

import re
from enum import IntEnum
from typing import Any, Optional

import httpx

MAX_RESPONSE_BODY_BYTES = 1024

_OFFLINE_MESSAGE = re.compile(r"server is currently offline", re.IGNORECASE)


class ErrorCode(IntEnum):
    """Application error codes returned by the PRC API."""

    UNKNOWN = 0
    ROBLOX_ERROR = 1001
    INTERNAL_ERROR = 1002
    NO_SERVER_KEY = 2000
    INVALID_SERVER_KEY_FORMAT = 2001
    INVALID_SERVER_KEY = 2002
    INVALID_GLOBAL_KEY = 2003
    BANNED_SERVER_KEY = 2004
    INVALID_COMMAND = 3001
    SERVER_OFFLINE = 3002
    RATE_LIMITED = 4001
    RESTRICTED_COMMAND = 4002
    PROHIBITED_MESSAGE = 4003
    RESTRICTED_RESOURCE = 9998
    OUTDATED_MODULE = 9999


FRIENDLY_MESSAGES: dict[int, str] = {
    ErrorCode.UNKNOWN: "An unknown error occurred. If this persists, please contact PRC support.",
    ErrorCode.ROBLOX_ERROR: "Failed to communicate with the game server. Please try again in a few minutes.",
    ErrorCode.INTERNAL_ERROR: "An internal system error occurred. Please try again later.",
    ErrorCode.NO_SERVER_KEY: "No server key provided. Please configure your server key.",
    ErrorCode.INVALID_SERVER_KEY_FORMAT: "Invalid server key. Please check your configuration.",
    ErrorCode.INVALID_SERVER_KEY: "Invalid server key. Please check your configuration.",
    ErrorCode.INVALID_GLOBAL_KEY: "Invalid API key. Please check your configuration.",
    ErrorCode.BANNED_SERVER_KEY: "This server key has been banned from accessing the API.",
    ErrorCode.INVALID_COMMAND: "Invalid command format. Please check your input.",
    ErrorCode.SERVER_OFFLINE: (
        "The server is currently offline (no players). "
        "Please try again when players are in the server."
    ),
    ErrorCode.RATE_LIMITED: "You are being rate limited. Please wait a moment and try again.",
    ErrorCode.RESTRICTED_COMMAND: "This command is restricted and cannot be executed.",
    ErrorCode.PROHIBITED_MESSAGE: "The message you're trying to send contains prohibited content.",
    ErrorCode.RESTRICTED_RESOURCE: "Access to this resource is restricted.",
    ErrorCode.OUTDATED_MODULE: "The server module is out of date. Please kick all players and try again.",
}

AUTH_ERROR_CODES = frozenset(
    {
        ErrorCode.NO_SERVER_KEY,
        ErrorCode.INVALID_SERVER_KEY_FORMAT,
        ErrorCode.INVALID_SERVER_KEY,
        ErrorCode.INVALID_GLOBAL_KEY,
        ErrorCode.BANNED_SERVER_KEY,
    }
)

RETRYABLE_ERROR_CODES = frozenset(
    {
        ErrorCode.ROBLOX_ERROR,
        ErrorCode.INTERNAL_ERROR,
        ErrorCode.RATE_LIMITED,
        ErrorCode.SERVER_OFFLINE,
    }
)


class ERLCError(Exception):
    """Base class for all client errors."""

    def __init__(self, message: str = "ER:LC client error"):
        self.message = message
        super().__init__(message)


class ERLCAPIError(ERLCError):
    """A failed API call.

    Instances are created once, at the point where a non-success response
    (or a transport failure) is translated, and are not mutated afterwards.

    Attributes:
        code: Application error code (``ErrorCode.UNKNOWN`` when absent)
        status: HTTP status code, if a response was received
        status_text: HTTP reason phrase
        retry_after: Server-directed wait in seconds (rate limits only)
        method: HTTP method of the originating request
        path: API path of the originating request
        url: Full URL of the originating request
        response_body: Raw response body, truncated to 1024 bytes of UTF-8
    """

    def __init__(
        self,
        message: str = "PRC API Error",
        *,
        code: int = ErrorCode.UNKNOWN,
        status: Optional[int] = None,
        status_text: Optional[str] = None,
        retry_after: Optional[float] = None,
        method: Optional[str] = None,
        path: Optional[str] = None,
        url: Optional[str] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.code = code
        self.status = status
        self.status_text = status_text
        self.retry_after = retry_after
        self.method = method
        self.path = path
        self.url = url
        self.response_body = response_body

    @classmethod
    def from_response(
        cls,
        response: httpx.Response,
        body: Any,
        context: Optional[dict[str, Optional[str]]] = None,
        raw_text: str = "",
        retry_after: Optional[float] = None,
    ) -> "ERLCAPIError":
        """Build an error from a non-success response.

        Args:
            response: The HTTP response
            body: Parsed JSON body (anything that is not a dict is ignored)
            context: Request context with ``method``, ``path`` and ``url``
            raw_text: Raw response text, kept (truncated) for diagnostics
            retry_after: Wait in seconds used when the body carries no hint

        Returns:
            A new ERLCAPIError
        """
        context = context or {}
        data = body if isinstance(body, dict) else {}

        code = data.get("code", data.get("errorCode", ErrorCode.UNKNOWN))
        try:
            code = int(code)
        except (TypeError, ValueError):
            code = ErrorCode.UNKNOWN

        message = data.get("message") or (
            f"HTTP {response.status_code}: {response.reason_phrase or 'Error'}"
        )

        body_retry = data.get("retry_after")
        if isinstance(body_retry, (int, float)) and not isinstance(body_retry, bool) and body_retry > 0:
            retry_after = float(body_retry)

        url = context.get("url")
        if not url and _has_request(response):
            url = str(response.request.url)

        return cls(
            str(message),
            code=code,
            status=response.status_code,
            status_text=response.reason_phrase,
            retry_after=retry_after,
            method=context.get("method"),
            path=context.get("path"),
            url=url,
            response_body=truncate_body(raw_text) if raw_text else None,
        )

    @property
    def is_rate_limit(self) -> bool:
        return self.code == ErrorCode.RATE_LIMITED or self.status == 429

    @property
    def is_server_offline(self) -> bool:
        return self.code == ErrorCode.SERVER_OFFLINE or is_private_server_offline_error(self)

    @property
    def is_auth_error(self) -> bool:
        return self.code in AUTH_ERROR_CODES

    @property
    def is_retryable(self) -> bool:
        return self.code in RETRYABLE_ERROR_CODES

    @property
    def friendly_message(self) -> str:
        return get_friendly_error_message(self)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code}, status={self.status}, "
            f"method={self.method!r}, path={self.path!r}, message={self.message!r})"
        )


class ERLCNetworkError(ERLCAPIError):
    """Raised when a request could not be completed at the transport level.

    The underlying httpx or timeout exception is chained as ``__cause__``.
    """


class ERLCResponseParseError(ERLCAPIError):
    """Raised when a successful response body is not valid JSON."""


class QueueClearedError(ERLCError):
    """Raised for requests still waiting in a queue when it is cleared."""

    def __init__(self, message: str = "Queue was cleared"):
        super().__init__(message)


class RequestCancelledError(ERLCError):
    """Raised for queued requests that were cancelled before execution."""

    def __init__(self, message: str = "Request was cancelled"):
        super().__init__(message)


class CacheBackendError(ERLCError):
    """Raised when a remote cache backend cannot be reached or read."""


def truncate_body(text: str, limit: int = MAX_RESPONSE_BODY_BYTES) -> str:
    """Cut text to at most ``limit`` UTF-8 bytes without splitting a character."""
    return text.encode("utf-8")[:limit].decode("utf-8", errors="ignore")


def _has_request(response: httpx.Response) -> bool:
    try:
        response.request
    except RuntimeError:
        return False
    return True


def get_friendly_error_message(err: Any) -> str:
    """Map an error to a stable, human-readable message.

    Args:
        err: An ERLCAPIError, a dict with a ``code`` key, or any exception

    Returns:
        The message for the error's code, or its own message as a fallback
    """
    if isinstance(err, dict):
        code, message = err.get("code"), err.get("message")
    else:
        code, message = getattr(err, "code", None), getattr(err, "message", None)

    if code is not None:
        try:
            return FRIENDLY_MESSAGES[int(code)]
        except (KeyError, TypeError, ValueError):
            return message or "An unknown error occurred."

    if message:
        return str(message)
    if isinstance(err, BaseException) and str(err):
        return str(err)
    return "An unknown error occurred."


def is_private_server_offline_error(err: Any) -> bool:
    """Check whether an error (or anything in its cause chain) means the server is offline.

    Args:
        err: An exception, a dict-like error payload or a plain message

    Returns:
        True if error code 3002 or an "offline" message is found
    """
    if isinstance(err, str):
        return bool(_OFFLINE_MESSAGE.search(err))

    seen: set[int] = set()
    current = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))

        if isinstance(current, dict):
            data = current.get("data") if isinstance(current.get("data"), dict) else {}
            code = current.get("code", data.get("code"))
            message = current.get("message", data.get("message"))
            nxt = current.get("cause")
        else:
            code = getattr(current, "code", None)
            message = getattr(current, "message", None)
            nxt = getattr(current, "__cause__", None)

        if isinstance(code, str):
            try:
                code = int(code)
            except ValueError:
                code = None
        if code == ErrorCode.SERVER_OFFLINE:
            return True
        if isinstance(message, str) and _OFFLINE_MESSAGE.search(message):
            return True

        current = nxt

    return False
