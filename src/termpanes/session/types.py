"""会话生命周期类型定义

- SessionPhase: 终端 pane 的生命周期阶段
- RemovalReason: coordinator 被关闭的原因
- Dimensions: 以字符格为单位的终端尺寸
- PhaseChange: 历史记录条目
- SessionRuntimeState: coordinator 持有的运行时字段
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..config import DEFAULT_COLS, DEFAULT_ROWS, SESSION_HISTORY_MAX_LENGTH


class SessionPhase(Enum):
    """生命周期阶段

    IDLE → SPAWNING | REATTACHING → RUNNING → CLOSING → CLOSED
    spawn 失败时从 SPAWNING 直接进入 CLOSED。
    """
    IDLE = "idle"
    SPAWNING = "spawning"
    REATTACHING = "reattaching"
    RUNNING = "running"
    CLOSING = "closing"
    CLOSED = "closed"

    @property
    def is_starting(self) -> bool:
        """等待后端中（前端显示加载状态）"""
        return self in {SessionPhase.SPAWNING, SessionPhase.REATTACHING}

    @property
    def is_live(self) -> bool:
        return self is SessionPhase.RUNNING

    @property
    def is_terminal(self) -> bool:
        """不会再有后续流转"""
        return self is SessionPhase.CLOSED


class RemovalReason(Enum):
    """coordinator 关闭原因

    只有 DETACHED 会保留后端会话，所有权转移到其他窗口。
    """
    PANE_CLOSED = "pane_closed"
    TAB_CLOSED = "tab_closed"
    DETACHED = "detached"
    SHUTDOWN = "shutdown"

    @property
    def terminates_session(self) -> bool:
        return self is not RemovalReason.DETACHED


@dataclass(frozen=True)
class Dimensions:
    cols: int = DEFAULT_COLS
    rows: int = DEFAULT_ROWS

    def __post_init__(self):
        if self.cols < 1 or self.rows < 1:
            raise ValueError(f"invalid terminal size {self.cols}x{self.rows}")

    def to_dict(self) -> dict:
        return {"cols": self.cols, "rows": self.rows}


@dataclass
class PhaseChange:
    from_phase: SessionPhase
    to_phase: SessionPhase
    reason: str = ""
    timestamp: float = field(default_factory=lambda: datetime.now().timestamp())

    def __str__(self) -> str:
        ts = datetime.fromtimestamp(self.timestamp).strftime("%H:%M:%S")
        return f"{ts} | {self.from_phase.value} → {self.to_phase.value} ({self.reason})"

    def to_dict(self) -> dict:
        return {
            "from_phase": self.from_phase.value,
            "to_phase": self.to_phase.value,
            "reason": self.reason,
            "timestamp": self.timestamp,
        }


@dataclass
class SessionRuntimeState:
    """每个 pane 的运行时状态，不存入 pane 树

    Attributes:
        phase: 当前生命周期阶段
        dimensions: 最近一次与后端协商的尺寸
        cwd: 最近一次 OSC 7 上报的工作目录
        error: 在 pane 内显示的 spawn 错误
        spawned_at: 进入 RUNNING 的时间
        closed_at: 进入 CLOSED 的时间
        history: 最近的阶段变化
    """
    phase: SessionPhase = SessionPhase.IDLE
    dimensions: Dimensions = field(default_factory=Dimensions)
    cwd: str | None = None
    error: str | None = None
    spawned_at: float | None = None
    closed_at: float | None = None
    history: deque[PhaseChange] = field(
        default_factory=lambda: deque(maxlen=SESSION_HISTORY_MAX_LENGTH)
    )

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "dimensions": self.dimensions.to_dict(),
            "cwd": self.cwd,
            "error": self.error,
            "spawned_at": self.spawned_at,
            "closed_at": self.closed_at,
            "history": [entry.to_dict() for entry in self.history],
        }
