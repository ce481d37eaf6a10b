"""Tests for the paced request queue."""

import asyncio
import time

import pytest

from erlc.exceptions import QueueClearedError, RequestCancelledError
from erlc.transport.queue import QueuedRequest, RequestQueue


def _job(results, value, delay=0.0):
    async def run():
        if delay:
            await asyncio.sleep(delay)
        results.append(value)
        return value

    return run


class TestRequestQueue:
    """Tests for RequestQueue."""

    @pytest.mark.asyncio
    async def test_single_worker_runs_in_submission_order(self):
        """With one worker and no interval, jobs complete FIFO."""
        queue = RequestQueue(workers=1, interval=0)
        order = []
        futures = [queue.enqueue(_job(order, i)) for i in range(10)]

        results = await asyncio.gather(*futures)

        assert results == list(range(10))
        assert order == list(range(10))
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_enqueue_auto_starts(self):
        queue = RequestQueue(workers=2, interval=0)
        assert queue.running is False

        future = queue.enqueue(_job([], "ok"))
        assert queue.running is True
        assert await future == "ok"
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_job_exception_rejects_future(self):
        """A failing job rejects only its own future."""
        queue = RequestQueue(workers=1, interval=0)

        async def boom():
            raise ValueError("boom")

        failing = queue.enqueue(boom)
        passing = queue.enqueue(_job([], 42))

        with pytest.raises(ValueError, match="boom"):
            await failing
        assert await passing == 42
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_clear_rejects_pending_jobs_without_running_them(self):
        """clear() rejects every waiting job with QueueClearedError."""
        queue = RequestQueue(workers=1, interval=0)
        ran = []
        blocker = asyncio.Event()

        async def block():
            await blocker.wait()
            return "first"

        first = queue.enqueue(block)
        await asyncio.sleep(0.01)
        pending = [queue.enqueue(_job(ran, i)) for i in range(5)]

        assert queue.clear() == 5
        blocker.set()

        assert await first == "first"
        for future in pending:
            with pytest.raises(QueueClearedError):
                await future
        await asyncio.sleep(0.01)
        assert ran == []
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_cancelled_request_is_rejected(self):
        """A job flagged as cancelled is skipped with RequestCancelledError."""
        queue = RequestQueue(workers=1, interval=0)
        ran = []
        future = asyncio.get_running_loop().create_future()
        queue._items.append(QueuedRequest(execute=_job(ran, 1), future=future, cancelled=True))
        queue.start()

        with pytest.raises(RequestCancelledError):
            await future
        assert ran == []
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_interval_paces_jobs(self):
        """Each worker waits the interval between jobs."""
        queue = RequestQueue(workers=1, interval=0.05)
        start = time.monotonic()
        await asyncio.gather(*(queue.enqueue(_job([], i)) for i in range(3)))
        elapsed = time.monotonic() - start

        # Two pauses happen before the third job starts
        assert elapsed >= 0.09
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_multiple_workers_run_concurrently(self):
        queue = RequestQueue(workers=3, interval=0)
        start = time.monotonic()
        await asyncio.gather(*(queue.enqueue(_job([], i, delay=0.05)) for i in range(3)))
        assert time.monotonic() - start < 0.14
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_status(self):
        queue = RequestQueue(workers=2, interval=0)
        status = queue.status()
        assert status.to_dict() == {"queue_length": 0, "active_workers": 0, "running": False}

        queue.start()
        await asyncio.sleep(0.01)
        assert queue.status().active_workers == 2
        assert queue.status().running is True

        await queue.shutdown()
        assert queue.status().active_workers == 0
        assert queue.status().running is False

    @pytest.mark.asyncio
    async def test_stop_keeps_pending_jobs(self):
        """stop() lets workers exit; jobs stay queued until restarted."""
        queue = RequestQueue(workers=1, interval=0)
        queue.start()
        queue.stop()
        await asyncio.sleep(0.01)

        future = asyncio.get_running_loop().create_future()
        queue._items.append(QueuedRequest(execute=_job([], "later"), future=future))
        assert len(queue) == 1

        queue.start()
        assert await future == "later"
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_compaction_keeps_order(self):
        """Large backlogs are compacted without losing or reordering jobs."""
        queue = RequestQueue(workers=1, interval=0)
        queue.COMPACT_THRESHOLD = 8
        order = []
        futures = [queue.enqueue(_job(order, i)) for i in range(100)]

        await asyncio.gather(*futures)

        assert order == list(range(100))
        assert len(queue) == 0
        await queue.shutdown()
