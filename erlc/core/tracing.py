"""W3C Trace Context support for outbound requests.

Each logical API call runs under one trace; every HTTP attempt within it gets
its own child span, sent upstream as a ``traceparent`` header and attached to
the attempt's log records.

Reference: https://www.w3.org/TR/trace-context/
"""

import re
import secrets
from contextvars import ContextVar
from dataclasses import dataclass, replace
from typing import Optional

# version-trace_id-span_id-flags, lowercase hex
_TRACEPARENT = re.compile(r"^([0-9a-f]{2})-([0-9a-f]{32})-([0-9a-f]{16})-([0-9a-f]{2})$")
_HEX = re.compile(r"^[0-9a-f]+$")

_current_trace: ContextVar[Optional["TraceContext"]] = ContextVar("erlc_trace", default=None)


def _check_hex(name: str, value: str, length: int) -> None:
    if len(value) != length or not _HEX.match(value):
        raise ValueError(f"Invalid {name}: {value!r} (expected {length} lowercase hex chars)")


@dataclass(frozen=True)
class TraceContext:
    """One span of a trace.

    Attributes:
        trace_id: 32 hex characters shared by every span of the trace
        span_id: 16 hex characters identifying this span (the ``parent-id``
            field of the header it is sent in)
        flags: Trace flags byte; bit 0 is "sampled"
        version: Header version, always ``"00"`` for spans created here
    """

    trace_id: str
    span_id: str
    flags: int = 1
    version: str = "00"

    def __post_init__(self):
        _check_hex("trace_id", self.trace_id, 32)
        _check_hex("span_id", self.span_id, 16)
        if not 0 <= self.flags <= 0xFF:
            raise ValueError(f"Invalid flags value: {self.flags}")

    @classmethod
    def generate_new(cls) -> "TraceContext":
        return cls(trace_id=secrets.token_hex(16), span_id=secrets.token_hex(8))

    @classmethod
    def from_traceparent(cls, header: str) -> Optional["TraceContext"]:
        """Parse a ``traceparent`` header, returning None when it is malformed."""
        match = _TRACEPARENT.match((header or "").strip().lower())
        if match is None:
            return None
        version, trace_id, span_id, flags = match.groups()
        return cls(trace_id=trace_id, span_id=span_id, flags=int(flags, 16), version=version)

    def to_traceparent(self) -> str:
        return f"{self.version}-{self.trace_id}-{self.span_id}-{self.flags:02x}"

    @property
    def is_sampled(self) -> bool:
        return bool(self.flags & 0x01)

    def create_child(self) -> "TraceContext":
        """New span in the same trace."""
        return replace(self, span_id=secrets.token_hex(8))


def get_current_trace_context() -> Optional[TraceContext]:
    return _current_trace.get()


def set_current_trace_context(context: Optional[TraceContext]) -> None:
    """Set the trace that later requests made from this task join."""
    _current_trace.set(context)


def current_or_new_trace() -> TraceContext:
    return _current_trace.get() or TraceContext.generate_new()
