"""Request transport: retry policy, paced queue and the request pipeline."""

from erlc.transport.pipeline import RequestContext, RequestPipeline
from erlc.transport.queue import QueueStatus, RequestQueue
from erlc.transport.retry import RetryPolicy, parse_retry_after

__all__ = [
    "RequestContext",
    "RequestPipeline",
    "QueueStatus",
    "RequestQueue",
    "RetryPolicy",
    "parse_retry_after",
]
