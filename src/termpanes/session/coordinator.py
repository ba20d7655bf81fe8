"""SessionCoordinator - 单个终端 pane 的 shell 会话生命周期

职责：
- 只启动一次：新建会话，或重连到运行中的会话
- 输出转发给显示端，同时扫描 OSC 7 cwd 上报
- resize 请求防抖后再交给后端
- pane 移除时回收会话，分离到其他窗口的除外
- spawn 在 pane 销毁后才完成时，清理遗留会话

阶段（见 SessionPhase）：
    IDLE → SPAWNING | REATTACHING → RUNNING → CLOSING → CLOSED
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ..config import METRICS_ENABLED, RESIZE_DEBOUNCE_SECONDS
from ..errors import SpawnFailed
from ..layout.types import TerminalNode
from ..telemetry import format_pane_log, get_logger, metrics
from .osc7 import Osc7Scanner
from .resize import ResizeCoalescer
from .types import Dimensions, PhaseChange, RemovalReason, SessionPhase, SessionRuntimeState

if TYPE_CHECKING:
    from ..backend.base import PtyBackend

logger = get_logger(__name__)

# 回调类型
OnOutputCallback = Callable[[bytes], Any]
OnCwdChangeCallback = Callable[[str, str], Any]
OnPhaseChangeCallback = Callable[[str, SessionPhase, SessionPhase], Any]
NodeAliveChecker = Callable[[str], bool]

_ALLOWED_TRANSITIONS: dict[SessionPhase, set[SessionPhase]] = {
    SessionPhase.IDLE: {SessionPhase.SPAWNING, SessionPhase.REATTACHING, SessionPhase.CLOSED},
    SessionPhase.SPAWNING: {SessionPhase.RUNNING, SessionPhase.CLOSING, SessionPhase.CLOSED},
    SessionPhase.REATTACHING: {SessionPhase.RUNNING, SessionPhase.CLOSING, SessionPhase.CLOSED},
    SessionPhase.RUNNING: {SessionPhase.CLOSING},
    SessionPhase.CLOSING: {SessionPhase.CLOSED},
    SessionPhase.CLOSED: set(),
}

_SPAWN_ERROR_TEMPLATE = "\x1b[31mFailed to spawn shell: {error}\x1b[0m\r\n"


class SessionCoordinator:
    """单个终端节点的生命周期状态机

    Attributes:
        pane_id: 终端节点 id，同时也是后端会话 id
        node: 创建该 coordinator 时的终端节点
    """

    def __init__(
        self,
        node: TerminalNode,
        backend: "PtyBackend",
        *,
        on_output: OnOutputCallback | None = None,
        on_cwd_change: OnCwdChangeCallback | None = None,
        on_phase_change: OnPhaseChangeCallback | None = None,
        is_node_alive: NodeAliveChecker | None = None,
        resize_delay: float = RESIZE_DEBOUNCE_SECONDS,
    ):
        self.pane_id = node.id
        self.node = node
        self._backend = backend
        self._on_output = on_output
        self._on_cwd_change = on_cwd_change
        self._on_phase_change = on_phase_change
        self._is_node_alive = is_node_alive

        self._state = SessionRuntimeState(cwd=node.cwd)
        self._scanner = Osc7Scanner()
        self._resizer = ResizeCoalescer(self._apply_resize, resize_delay, label=self.pane_id)
        self._close_reason: RemovalReason | None = None
        self._subscribed = False
        # 回放滚动缓冲期间暂存的实时输出
        self._held: list[bytes] | None = None
        # 会话运行前请求的尺寸
        self._requested: Dimensions | None = None
        self._closed = asyncio.Event()

    # === 属性 ===

    @property
    def phase(self) -> SessionPhase:
        return self._state.phase

    @property
    def state(self) -> SessionRuntimeState:
        return self._state

    @property
    def close_reason(self) -> RemovalReason | None:
        return self._close_reason

    @property
    def error(self) -> str | None:
        return self._state.error

    def snapshot(self) -> dict:
        return {
            "pane_id": self.pane_id,
            "shell": self.node.shell,
            "distro": self.node.distro,
            "reattach": self.node.reattach,
            **self._state.to_dict(),
        }

    # === 启动 ===

    async def start(self) -> bool:
        """新建或重连会话

        只有 IDLE 状态下的第一次调用生效，之后的调用（如前端重复挂载同一
        pane）返回 False。

        Returns:
            会话最终是否进入 RUNNING
        """
        target = SessionPhase.REATTACHING if self.node.reattach else SessionPhase.SPAWNING
        if not self._transition(target, "start"):
            logger.debug(self._log(f"start ignored in phase {self.phase.value}"))
            return False

        self._backend.subscribe(self.pane_id, self.feed_output)
        self._subscribed = True

        if target is SessionPhase.REATTACHING:
            return await self._reattach()
        return await self._spawn()

    async def _spawn(self) -> bool:
        error: str | None = None
        try:
            dims = await self._backend.spawn(
                self.pane_id, self.node.shell, self.node.distro, self.node.cwd
            )
        except SpawnFailed as e:
            error = str(e)
        except Exception as e:
            error = str(SpawnFailed(self.pane_id, f"{type(e).__name__}: {e}"))

        if error is not None:
            logger.error(self._log(f"Spawn failed: {error}"))
            if METRICS_ENABLED:
                metrics.inc("session.spawn_failed", {"shell": self.node.shell})
            self._state.error = error
            if self._close_reason is None:
                self._emit_output(_SPAWN_ERROR_TEMPLATE.format(error=error).encode("utf-8"))
            self._unsubscribe()
            self._transition(SessionPhase.CLOSED, "spawn_failed")
            return False

        if self._cancelled_while_starting():
            reason = self._close_reason or RemovalReason.PANE_CLOSED
            logger.info(self._log(f"Pane gone before spawn completed, cleaning up ({reason.value})"))
            if METRICS_ENABLED:
                metrics.inc("session.leaked_cleanup")
            if reason.terminates_session:
                await self._terminate()
            self._unsubscribe()
            self._transition(SessionPhase.CLOSED, "cancelled")
            return False

        self._state.dimensions = dims
        self._resizer.mark_flushed(dims)
        self._state.spawned_at = datetime.now().timestamp()
        self._transition(SessionPhase.RUNNING, "spawned")
        self._submit_requested_size()
        return True

    async def _reattach(self) -> bool:
        self._held = []
        buffer: bytes | None = None
        try:
            buffer = await self._backend.reattach(self.pane_id)
        except Exception as e:
            logger.warning(self._log(f"Reattach buffer unavailable, continuing empty: {e}"))
            if METRICS_ENABLED:
                metrics.inc("session.reattach_buffer_unavailable")

        held, self._held = self._held, None

        if self._cancelled_while_starting():
            reason = self._close_reason or RemovalReason.PANE_CLOSED
            logger.info(self._log(f"Pane gone before reattach completed ({reason.value})"))
            if reason.terminates_session:
                await self._terminate()
            self._unsubscribe()
            self._transition(SessionPhase.CLOSED, "cancelled")
            return False

        if buffer:
            self._process_chunk(buffer)
        for chunk in held:
            self._process_chunk(chunk)

        self._state.spawned_at = datetime.now().timestamp()
        self._transition(SessionPhase.RUNNING, "reattached")
        self._submit_requested_size()
        return True

    def _cancelled_while_starting(self) -> bool:
        if self._close_reason is not None:
            return True
        if self._is_node_alive is not None and not self._is_node_alive(self.pane_id):
            return True
        return False

    # === 输出 ===

    def feed_output(self, chunk: bytes) -> None:
        """处理一段后端输出（订阅回调）"""
        if self.phase in (SessionPhase.CLOSING, SessionPhase.CLOSED):
            return
        if self._held is not None:
            self._held.append(chunk)
            return
        self._process_chunk(chunk)

    def _process_chunk(self, chunk: bytes) -> None:
        self._emit_output(chunk)
        for path in self._scanner.feed(chunk):
            if path == self._state.cwd:
                continue
            self._state.cwd = path
            if METRICS_ENABLED:
                metrics.inc("osc7.cwd")
            logger.debug(self._log(f"cwd → {path}"))
            if self._on_cwd_change is not None:
                try:
                    self._on_cwd_change(self.pane_id, path)
                except Exception as e:
                    logger.error(self._log(f"cwd callback failed: {e}"))

    def _emit_output(self, data: bytes) -> None:
        if self._on_output is None:
            return
        try:
            self._on_output(data)
        except Exception as e:
            logger.error(self._log(f"output callback failed: {e}"))

    # === 输入 / resize ===

    async def write(self, data: bytes | str) -> bool:
        """转发用户输入，非 RUNNING 时丢弃"""
        if self.phase is not SessionPhase.RUNNING:
            logger.debug(self._log(f"input dropped in phase {self.phase.value}"))
            return False
        if isinstance(data, str):
            data = data.encode("utf-8")
        try:
            await self._backend.write(self.pane_id, data)
        except Exception as e:
            logger.warning(self._log(f"write failed: {e}"))
            return False
        return True

    def request_resize(self, cols: int, rows: int) -> None:
        """接收显示端的尺寸变化（防抖）"""
        try:
            dims = Dimensions(cols, rows)
        except ValueError as e:
            logger.debug(self._log(str(e)))
            return

        if self.phase is SessionPhase.RUNNING:
            self._resizer.submit(dims)
        elif self.phase.is_starting:
            self._requested = dims

    def _submit_requested_size(self) -> None:
        requested, self._requested = self._requested, None
        if requested is not None and requested != self._state.dimensions:
            self._resizer.submit(requested)

    async def _apply_resize(self, dims: Dimensions) -> None:
        if self.phase is not SessionPhase.RUNNING:
            return
        await self._backend.resize(self.pane_id, dims.cols, dims.rows)
        self._state.dimensions = dims

    async def flush_resize(self) -> None:
        """等待挂起的 resize 下发到后端"""
        await self._resizer.drain()

    # === 关闭 ===

    async def close(self, reason: RemovalReason = RemovalReason.PANE_CLOSED) -> None:
        """pane 离开树后回收会话

        DETACHED 的 pane 保留后端会话，交给新窗口接管。spawn 进行中关闭只做
        标记，由 spawn 返回后负责终止会话。
        """
        if self.phase in (SessionPhase.CLOSING, SessionPhase.CLOSED):
            return

        self._close_reason = reason
        self._resizer.cancel()

        if self.phase is SessionPhase.IDLE:
            self._transition(SessionPhase.CLOSED, reason.value)
            return

        if self.phase.is_starting:
            self._transition(SessionPhase.CLOSING, reason.value)
            self._unsubscribe()
            return

        self._transition(SessionPhase.CLOSING, reason.value)
        self._unsubscribe()
        if reason.terminates_session:
            await self._terminate()
        else:
            logger.info(self._log("Handed off, session left running"))
        self._transition(SessionPhase.CLOSED, reason.value)

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def _terminate(self) -> None:
        try:
            await self._backend.terminate(self.pane_id)
        except Exception as e:
            logger.warning(self._log(f"terminate failed: {e}"))
            if METRICS_ENABLED:
                metrics.inc("session.terminate_failed")

    def _unsubscribe(self) -> None:
        if self._subscribed:
            self._backend.unsubscribe(self.pane_id, self.feed_output)
            self._subscribed = False

    # === 状态机 ===

    def _transition(self, to_phase: SessionPhase, reason: str) -> bool:
        from_phase = self._state.phase
        if to_phase not in _ALLOWED_TRANSITIONS[from_phase]:
            return False

        self._state.phase = to_phase
        self._state.history.append(PhaseChange(from_phase, to_phase, reason))
        if to_phase is SessionPhase.CLOSED:
            self._state.closed_at = datetime.now().timestamp()
            self._closed.set()

        logger.info(self._log(f"{from_phase.value} → {to_phase.value} ({reason})"))

        if self._on_phase_change is not None:
            try:
                self._on_phase_change(self.pane_id, from_phase, to_phase)
            except Exception as e:
                logger.error(self._log(f"phase callback failed: {e}"))
        return True

    def _log(self, msg: str) -> str:
        return format_pane_log("Session", self.pane_id, msg)
