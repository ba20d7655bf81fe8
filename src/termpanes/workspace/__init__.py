"""Workspace 模块

- tracker: 每个 tab 的激活 pane
- workspace: tab 注册表与会话对齐
- persistence: 布局保存与恢复
"""

from .tracker import ActivePaneTracker
from .workspace import DetachedPane, Workspace
from .persistence import (
    SavedSession,
    SavedTab,
    capture,
    save_session,
    load_session,
    restore_session,
    delete_session,
)

__all__ = [
    "ActivePaneTracker",
    "DetachedPane",
    "Workspace",
    # Persistence
    "SavedSession",
    "SavedTab",
    "capture",
    "save_session",
    "load_session",
    "restore_session",
    "delete_session",
]
