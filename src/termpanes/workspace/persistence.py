"""会话持久化模块

保存每个已打开 tab 的声明式布局，供下次启动恢复：
- 原子写入（temp + rename）
- checksum 校验（sha256）
- version 版本控制
- 损坏或格式不符的文件跳过告警

只保存结构（每个终端的 shell、distro、cwd 以及分屏）。
恢复出的 tab 使用新 id 并启动新 shell，不会重连。
"""

import hashlib
import json
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path

from ..config import PERSIST_FILE, PERSIST_VERSION
from ..errors import InvalidTree
from ..layout import (
    PaneNode,
    TabPaneState,
    collect_leaf_ids,
    node_from_dict,
    node_to_dict,
    strip_runtime,
)
from ..telemetry import get_logger, metrics
from .workspace import Workspace

logger = get_logger(__name__)


@dataclass
class SavedTab:
    root: PaneNode
    active_leaf_index: int = 0

    def to_dict(self) -> dict:
        return {
            "root": node_to_dict(self.root),
            "active_leaf_index": self.active_leaf_index,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SavedTab":
        return cls(
            root=node_from_dict(data["root"]),
            active_leaf_index=int(data.get("active_leaf_index", 0)),
        )


@dataclass
class SavedSession:
    """整个工作区的布局

    Attributes:
        tabs: 按显示顺序排列的 tab
        active_tab_index: 激活 tab 的下标
        saved_at: 保存时间（Unix 时间戳）
    """
    tabs: list[SavedTab] = field(default_factory=list)
    active_tab_index: int = 0
    saved_at: float = 0.0


def _calculate_checksum(data: bytes) -> str:
    """计算 SHA256 checksum"""
    return hashlib.sha256(data).hexdigest()


def _encode(payload: dict) -> bytes:
    return json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")


def capture(workspace: Workspace, active_tab_id: str | None = None) -> SavedSession:
    """从 workspace 当前的 tab 构建 SavedSession"""
    active_tab_id = active_tab_id or workspace.active_tab_id
    tabs: list[SavedTab] = []
    active_tab_index = 0
    for index, tab_id in enumerate(workspace.tab_ids()):
        state = workspace.get_tab(tab_id)
        leaves = collect_leaf_ids(state.root)
        active_leaf = leaves.index(state.active_pane_id) if state.active_pane_id in leaves else 0
        tabs.append(SavedTab(root=strip_runtime(state.root, fresh_ids=False), active_leaf_index=active_leaf))
        if tab_id == active_tab_id:
            active_tab_index = index
    return SavedSession(tabs=tabs, active_tab_index=active_tab_index, saved_at=time.time())


def save_session(
    workspace: Workspace,
    path: Path | None = None,
    *,
    active_tab_id: str | None = None,
    version: int = PERSIST_VERSION,
) -> bool:
    """保存工作区布局到文件

    使用 temp + rename 原子写入，包含 checksum 校验。

    Args:
        workspace: 要保存的 Workspace
        path: 文件路径，默认 ``PERSIST_FILE``
        active_tab_id: 激活的 tab，以下标保存；默认取 workspace 的激活 tab
        version: 格式版本

    Returns:
        是否写入成功
    """
    path = path or PERSIST_FILE
    saved = capture(workspace, active_tab_id)

    try:
        data = {
            "version": version,
            "saved_at": saved.saved_at,
            "active_tab_index": saved.active_tab_index,
            "tabs": [tab.to_dict() for tab in saved.tabs],
        }
        data["checksum"] = _calculate_checksum(_encode(data))

        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".session_", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(_encode(data))
            os.replace(temp_path, path)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

        logger.info(f"[Persist] Saved {len(saved.tabs)} tabs to {path}")
        return True

    except Exception as e:
        logger.error(f"[Persist] Save failed: {e}")
        metrics.inc("persist.error", {"op": "save"})
        return False


def load_session(path: Path | None = None, version: int = PERSIST_VERSION) -> SavedSession | None:
    """加载已保存的布局

    校验 version 和 checksum，失败时返回 None。

    Returns:
        SavedSession，文件不存在或不可用时为 None
    """
    path = path or PERSIST_FILE

    if not path.exists():
        logger.debug(f"[Persist] File not found: {path}")
        return None

    try:
        data = json.loads(path.read_bytes().decode("utf-8"))

        file_version = data.get("version", 1)
        if file_version != version:
            logger.warning(f"[Persist] Version mismatch: file={file_version}, expected={version}")
            metrics.inc("persist.error", {"op": "load", "reason": "version"})
            return None

        stored_checksum = data.pop("checksum", None)
        if stored_checksum and _calculate_checksum(_encode(data)) != stored_checksum:
            logger.warning("[Persist] Checksum mismatch")
            metrics.inc("persist.error", {"op": "load", "reason": "checksum"})
            return None

        tabs = [SavedTab.from_dict(tab) for tab in data.get("tabs", [])]
        saved = SavedSession(
            tabs=tabs,
            active_tab_index=int(data.get("active_tab_index", 0)),
            saved_at=float(data.get("saved_at", 0.0)),
        )
        logger.info(f"[Persist] Loaded {len(tabs)} tabs")
        return saved

    except json.JSONDecodeError as e:
        logger.warning(f"[Persist] Invalid JSON: {e}")
        metrics.inc("persist.error", {"op": "load", "reason": "json"})
        return None

    except (InvalidTree, KeyError, TypeError, ValueError) as e:
        logger.warning(f"[Persist] Malformed session file: {e}")
        metrics.inc("persist.error", {"op": "load", "reason": "layout"})
        return None


def restore_session(workspace: Workspace, saved: SavedSession) -> tuple[list[TabPaneState], str | None]:
    """在 ``workspace`` 中以新 id 重新打开已保存的 tab

    这里不启动会话，需对返回的每个 tab 调用 ``workspace.sync_sessions``。
    保存时激活的 tab 会成为 workspace 的激活 tab。

    Returns:
        (已打开的 tab 列表, 要激活的 tab id)
    """
    opened: list[TabPaneState] = []
    for tab in saved.tabs:
        root = strip_runtime(tab.root)
        state = workspace.open_layout(root)
        leaves = collect_leaf_ids(root)
        if 0 < tab.active_leaf_index < len(leaves):
            workspace.set_active(state.tab_id, leaves[tab.active_leaf_index])
            state = workspace.get_tab(state.tab_id)
        opened.append(state)

    active_tab_id = None
    if opened:
        index = min(max(saved.active_tab_index, 0), len(opened) - 1)
        active_tab_id = opened[index].tab_id
        workspace.set_active_tab(active_tab_id)
    return opened, active_tab_id


def delete_session(path: Path | None = None) -> bool:
    """删除会话文件"""
    path = path or PERSIST_FILE
    try:
        if path.exists():
            os.unlink(path)
            logger.info(f"[Persist] Deleted: {path}")
        return True
    except OSError as e:
        logger.error(f"[Persist] Delete failed: {e}")
        return False
