"""ResizeCoalescer tests"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from termpanes.session import Dimensions, ResizeCoalescer
from termpanes.telemetry import metrics


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def flush():
    return AsyncMock()


class TestCoalescing:
    """Only the latest size is flushed"""

    async def test_burst_flushes_once(self, flush):
        coalescer = ResizeCoalescer(flush, delay=0.02, label="pane-1")
        for cols in range(81, 91):
            coalescer.submit(Dimensions(cols, 24))

        await coalescer.drain()

        flush.assert_awaited_once_with(Dimensions(90, 24))
        assert coalescer.last_flushed == Dimensions(90, 24)
        assert coalescer.pending is None
        assert metrics.get_counter("resize.flushed", {"pane": "pane-1"}) == 1

    async def test_submit_pushes_deadline(self, flush):
        coalescer = ResizeCoalescer(flush, delay=0.05)
        coalescer.submit(Dimensions(100, 30))
        await asyncio.sleep(0.03)
        coalescer.submit(Dimensions(101, 30))
        await asyncio.sleep(0.03)
        flush.assert_not_awaited()

        await coalescer.drain()
        flush.assert_awaited_once_with(Dimensions(101, 30))

    async def test_same_size_skipped(self, flush):
        coalescer = ResizeCoalescer(flush, delay=0.01)
        coalescer.mark_flushed(Dimensions(80, 24))
        coalescer.submit(Dimensions(80, 24))
        await coalescer.drain()
        flush.assert_not_awaited()

    async def test_separate_bursts(self, flush):
        coalescer = ResizeCoalescer(flush, delay=0.01)
        coalescer.submit(Dimensions(100, 40))
        await coalescer.drain()
        coalescer.submit(Dimensions(120, 40))
        await coalescer.drain()
        assert flush.await_count == 2


class TestFailures:
    """Flush errors never propagate"""

    async def test_failure_logged_and_counted(self):
        flush = AsyncMock(side_effect=RuntimeError("boom"))
        coalescer = ResizeCoalescer(flush, delay=0.01, label="pane-2")
        coalescer.submit(Dimensions(100, 40))

        await coalescer.drain()

        assert coalescer.last_flushed is None
        assert metrics.get_counter("resize.failed", {"pane": "pane-2"}) == 1

    async def test_cancel_drops_pending(self, flush):
        coalescer = ResizeCoalescer(flush, delay=0.05)
        coalescer.submit(Dimensions(100, 40))
        coalescer.cancel()
        await asyncio.sleep(0.08)
        flush.assert_not_awaited()
        assert coalescer.pending is None
