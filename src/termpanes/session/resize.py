"""ResizeCoalescer - 防抖的 resize 通道

布局变化产生尺寸事件的频率远高于 PTY 应该 resize 的频率。
每次 ``submit`` 覆盖挂起的尺寸并推迟截止时间；通道静默 ``delay`` 秒后，
最新尺寸只下发一次。与上次下发相同的尺寸直接跳过。

下发失败只记录日志和计数，不抛出；下一次布局变化会自动纠正。
"""

import asyncio
from collections.abc import Awaitable, Callable

from ..config import METRICS_ENABLED, RESIZE_DEBOUNCE_SECONDS
from ..telemetry import format_pane_log, get_logger, metrics
from .types import Dimensions

logger = get_logger(__name__)

FlushCallback = Callable[[Dimensions], Awaitable[None]]


class ResizeCoalescer:
    """合并单个 pane 的 resize 请求

    Attributes:
        label: 日志和指标标签中使用的 pane id
    """

    def __init__(
        self,
        flush: FlushCallback,
        delay: float = RESIZE_DEBOUNCE_SECONDS,
        label: str = "",
    ):
        self.label = label
        self._flush = flush
        self._delay = delay
        self._pending: Dimensions | None = None
        self._last_flushed: Dimensions | None = None
        self._deadline = 0.0
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> Dimensions | None:
        return self._pending

    @property
    def last_flushed(self) -> Dimensions | None:
        return self._last_flushed

    def mark_flushed(self, dims: Dimensions) -> None:
        """记录后端已有的尺寸（如 spawn 返回的）"""
        self._last_flushed = dims

    def submit(self, dims: Dimensions) -> None:
        """提交 resize，覆盖尚未下发的请求"""
        loop = asyncio.get_running_loop()
        self._pending = dims
        self._deadline = loop.time() + self._delay
        if self._task is None:
            self._task = loop.create_task(self._run())

    def cancel(self) -> None:
        """丢弃挂起的请求并停止下发任务"""
        self._pending = None
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def drain(self) -> None:
        """等待直到没有挂起的请求"""
        task = self._task
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while self._pending is not None:
                remaining = self._deadline - loop.time()
                if remaining > 0:
                    await asyncio.sleep(remaining)
                    continue

                dims = self._pending
                self._pending = None
                if dims == self._last_flushed:
                    continue
                await self._flush_one(dims)
        finally:
            if self._task is asyncio.current_task():
                self._task = None

    async def _flush_one(self, dims: Dimensions) -> None:
        try:
            await self._flush(dims)
        except Exception as e:
            logger.warning(format_pane_log("Resize", self.label, f"Resize to {dims.cols}x{dims.rows} failed: {e}"))
            if METRICS_ENABLED:
                metrics.inc("resize.failed", {"pane": self.label[:8]})
            return

        self._last_flushed = dims
        if METRICS_ENABLED:
            metrics.inc("resize.flushed", {"pane": self.label[:8]})
        logger.debug(format_pane_log("Resize", self.label, f"Flushed {dims.cols}x{dims.rows}"))
