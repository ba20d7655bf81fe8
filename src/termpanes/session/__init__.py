"""Session 模块

终端 pane 的运行时部分：
- types: 类型定义（SessionPhase, RemovalReason, Dimensions, SessionRuntimeState）
- osc7: 可跨 chunk 的 OSC 7 cwd 扫描器
- resize: 防抖 resize 通道
- coordinator: SessionCoordinator 状态机
"""

from .types import (
    SessionPhase,
    RemovalReason,
    Dimensions,
    PhaseChange,
    SessionRuntimeState,
)
from .osc7 import Osc7Scanner, parse_osc7_uri
from .resize import ResizeCoalescer
from .coordinator import SessionCoordinator

__all__ = [
    # Types
    "SessionPhase",
    "RemovalReason",
    "Dimensions",
    "PhaseChange",
    "SessionRuntimeState",
    # OSC 7
    "Osc7Scanner",
    "parse_osc7_uri",
    # Resize
    "ResizeCoalescer",
    # Coordinator
    "SessionCoordinator",
]
