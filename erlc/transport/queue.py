"""Paced request queue.

Outbound calls are submitted as zero-argument coroutine factories and run by
a fixed number of worker loops on the current event loop. Each worker pauses
``interval`` seconds between jobs, so throughput is roughly
``workers / interval`` requests per second.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from erlc.core.logging import get_logger
from erlc.exceptions import QueueClearedError, RequestCancelledError

logger = get_logger(__name__)

Job = Callable[[], Awaitable[Any]]


@dataclass
class QueuedRequest:
    """A unit of work waiting in the queue."""

    execute: Job
    future: asyncio.Future
    cancelled: bool = False
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class QueueStatus:
    queue_length: int
    active_workers: int
    running: bool

    def to_dict(self) -> dict:
        return {
            "queue_length": self.queue_length,
            "active_workers": self.active_workers,
            "running": self.running,
        }


class RequestQueue:
    """FIFO request queue drained by paced worker loops.

    Every submitted job resolves or rejects its future exactly once. With a
    single worker, jobs complete in submission order; with several workers
    only each worker's own jobs are ordered.

    Example:
        queue = RequestQueue(workers=1, interval=0.5)
        result = await queue.enqueue(lambda: client.get("/server"))
        await queue.shutdown()
    """

    # Idle workers re-check the queue this often (seconds)
    IDLE_POLL_INTERVAL = 0.05

    # The consumed prefix is dropped once it is this long and at least half the buffer
    COMPACT_THRESHOLD = 1024

    def __init__(self, workers: int = 1, interval: float = 1.0):
        """Initialize the queue.

        Args:
            workers: Number of worker loops (minimum 1)
            interval: Seconds each worker waits after finishing a job
        """
        self.workers = max(1, int(workers))
        self.interval = max(0.0, float(interval))

        self._items: List[Optional[QueuedRequest]] = []
        self._offset = 0
        self._running = False
        self._generation = 0
        self._active_workers = 0
        self._tasks: List[asyncio.Task] = []
        self._stop_event = asyncio.Event()

    def __len__(self) -> int:
        return len(self._items) - self._offset

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Spawn the worker loops. Must be called from a running event loop."""
        if self._running:
            return
        self._running = True
        self._generation += 1
        self._stop_event.clear()
        self._tasks = [task for task in self._tasks if not task.done()]
        self._tasks += [
            asyncio.create_task(self._worker(i, self._generation), name=f"erlc-queue-worker-{i}")
            for i in range(self.workers)
        ]
        logger.debug(f"Request queue started ({self.workers} workers, interval {self.interval}s)")

    def stop(self) -> None:
        """Signal all workers to exit after their current job.

        In-flight jobs are not cancelled.
        """
        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        logger.debug("Request queue stopping")

    async def shutdown(self) -> None:
        """Stop the workers, reject pending jobs and wait for the loops to exit."""
        self.stop()
        self.clear()
        tasks, self._tasks = self._tasks, []
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def enqueue(self, execute: Job) -> asyncio.Future:
        """Submit a job, starting the workers if needed.

        Args:
            execute: Zero-argument callable returning an awaitable

        Returns:
            A future resolved or rejected with the job's own outcome
        """
        future = asyncio.get_running_loop().create_future()
        self._items.append(QueuedRequest(execute=execute, future=future))
        if not self._running:
            self.start()
        return future

    def clear(self) -> int:
        """Reject every job still waiting with :class:`QueueClearedError`.

        Jobs already executing are unaffected.

        Returns:
            Number of jobs rejected
        """
        pending = [item for item in self._items[self._offset:] if item is not None]
        self._items = []
        self._offset = 0

        for request in pending:
            request.cancelled = True
            if not request.future.done():
                request.future.set_exception(QueueClearedError())
        if pending:
            logger.debug(f"Request queue cleared ({len(pending)} pending jobs rejected)")
        return len(pending)

    def status(self) -> QueueStatus:
        return QueueStatus(
            queue_length=len(self),
            active_workers=self._active_workers,
            running=self._running,
        )

    def _dequeue(self) -> Optional[QueuedRequest]:
        if len(self) == 0:
            return None

        request = self._items[self._offset]
        self._items[self._offset] = None
        self._offset += 1

        if self._offset >= len(self._items):
            self._items = []
            self._offset = 0
        elif self._offset > self.COMPACT_THRESHOLD and self._offset * 2 >= len(self._items):
            self._items = self._items[self._offset:]
            self._offset = 0

        return request

    async def _pause(self, seconds: float) -> None:
        """Sleep, waking early if the queue is stopped."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _worker(self, index: int, generation: int) -> None:
        self._active_workers += 1
        try:
            while self._running and generation == self._generation:
                request = self._dequeue()
                if request is None:
                    await self._pause(self.IDLE_POLL_INTERVAL)
                    continue

                if request.future.done():
                    # Cancelled by the caller while waiting
                    continue
                if request.cancelled:
                    request.future.set_exception(RequestCancelledError())
                    continue

                await self._run(request)

                if self.interval > 0:
                    await self._pause(self.interval)
        finally:
            self._active_workers -= 1
            logger.debug(f"Request queue worker {index} exited")

    @staticmethod
    async def _run(request: QueuedRequest) -> None:
        try:
            result = await request.execute()
        except asyncio.CancelledError:
            request.future.cancel()
            raise
        except Exception as e:
            if not request.future.done():
                request.future.set_exception(e)
        else:
            if not request.future.done():
                request.future.set_result(result)
