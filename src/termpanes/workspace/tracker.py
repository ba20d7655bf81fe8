"""ActivePaneTracker - 每个 tab 当前聚焦的 pane

workspace 在结构变更（split、close）的同一步里设置激活 pane，
因此 tab 不会指向已经不存在的 pane。
"""

from ..layout import PaneNode, set_active as validate_active
from ..telemetry import format_pane_log, get_logger

logger = get_logger(__name__)


class ActivePaneTracker:
    """按 tab 记录激活 pane"""

    def __init__(self):
        self._active: dict[str, str] = {}

    def get_active(self, tab_id: str) -> str | None:
        return self._active.get(tab_id)

    def set_active(self, tab_id: str, pane_id: str, root: PaneNode) -> str:
        """校验 ``pane_id`` 是 ``root`` 中的终端后设为激活

        Raises:
            NodeNotFound, NotATerminal
        """
        pane_id = validate_active(root, pane_id)
        self.assign(tab_id, pane_id)
        return pane_id

    def assign(self, tab_id: str, pane_id: str) -> None:
        """记录调用方已校验过的激活 pane"""
        previous = self._active.get(tab_id)
        self._active[tab_id] = pane_id
        if previous != pane_id:
            logger.debug(format_pane_log("Focus", pane_id, f"active in tab {tab_id[:8]}"))

    def forget(self, tab_id: str) -> None:
        self._active.pop(tab_id, None)

    def tab_ids(self) -> list[str]:
        return list(self._active.keys())
