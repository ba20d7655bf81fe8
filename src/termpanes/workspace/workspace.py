"""Workspace - tab、pane 树及叶子背后的会话

结构操作（打开、分屏、关闭、聚焦、cwd、尺寸）是同步的，按调用顺序作用于
tab 的树。会话相关工作是异步的：``sync_sessions`` 让 tab 的 coordinator
与当前叶子对齐，为新 pane 启动会话，回收已离开树的 pane 的会话。

结构调用指向未知 tab 或 pane 时记录日志、计数并忽略，tab 保持原状态。
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

from ..backend.base import PtyBackend
from ..config import DEFAULT_SHELL, METRICS_ENABLED, RESIZE_DEBOUNCE_SECONDS
from ..core.ids import new_id, short_id
from ..errors import InvalidTree, TabNotFound, TreeError
from ..layout import (
    Orientation,
    PaneNode,
    TabPaneState,
    TerminalNode,
    collect_leaf_ids,
    find_terminal,
    tab_to_dict,
)
from ..layout import tree
from ..session import RemovalReason, SessionCoordinator, SessionPhase
from ..telemetry import format_pane_log, get_logger, metrics
from .tracker import ActivePaneTracker

logger = get_logger(__name__)

# (tab_id, state)；tab 关闭后 state 为 None
ChangeCallback = Callable[[str, TabPaneState | None], Any]
TabCloseCallback = Callable[[str], Any]
PaneOutputCallback = Callable[[bytes], Any]


@dataclass(frozen=True)
class DetachedPane:
    """移到其他窗口的 pane 的交接记录

    后端会话继续运行，接收方用
    ``Workspace.restore_tab(pane_id, shell, distro, cwd)`` 重新打开。
    """
    pane_id: str
    shell: str
    distro: str | None = None
    cwd: str | None = None

    def to_dict(self) -> dict:
        return {
            "pane_id": self.pane_id,
            "shell": self.shell,
            "distro": self.distro,
            "cwd": self.cwd,
        }


class Workspace:
    """已打开 tab 及其会话 coordinator 的注册表

    Usage:
        workspace = Workspace(LocalPtyBackend())
        state = workspace.open_tab("bash")
        await workspace.sync_sessions(state.tab_id)
        workspace.split(state.tab_id, state.active_pane_id, Orientation.HORIZONTAL, "bash")
        await workspace.sync_sessions(state.tab_id)
    """

    def __init__(self, backend: PtyBackend, *, resize_delay: float = RESIZE_DEBOUNCE_SECONDS):
        self.backend = backend
        self._resize_delay = resize_delay

        self._tabs: dict[str, TabPaneState] = {}
        self._tracker = ActivePaneTracker()
        self._active_tab_id: str | None = None
        # 当前所有树中的终端叶子: pane_id -> tab_id
        self._pane_tab: dict[str, str] = {}

        self._coordinators: dict[str, SessionCoordinator] = {}
        self._coordinator_tab: dict[str, str] = {}
        self._removal_reasons: dict[str, RemovalReason] = {}

        self._change_callbacks: list[ChangeCallback] = []
        self._tab_close_callbacks: list[TabCloseCallback] = []
        self._output_callbacks: dict[str, list[PaneOutputCallback]] = {}

    # === 监听器 ===

    def on_change(self, callback: ChangeCallback) -> None:
        """每次变更生效后以 (tab_id, state) 回调"""
        self._change_callbacks.append(callback)

    def on_tab_close_requested(self, callback: TabCloseCallback) -> None:
        """关闭 pane 导致 tab 为空时以 tab_id 回调"""
        self._tab_close_callbacks.append(callback)

    def subscribe_output(self, pane_id: str, callback: PaneOutputCallback) -> None:
        self._output_callbacks.setdefault(pane_id, []).append(callback)

    def unsubscribe_output(self, pane_id: str, callback: PaneOutputCallback) -> None:
        callbacks = self._output_callbacks.get(pane_id)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)
            if not callbacks:
                del self._output_callbacks[pane_id]

    def _notify_change(self, tab_id: str) -> None:
        state = self._tabs.get(tab_id)
        for callback in list(self._change_callbacks):
            try:
                callback(tab_id, state)
            except Exception as e:
                logger.error(f"[Workspace] change callback failed: {e}")

    def _notify_tab_close(self, tab_id: str) -> None:
        for callback in list(self._tab_close_callbacks):
            try:
                callback(tab_id)
            except Exception as e:
                logger.error(f"[Workspace] tab close callback failed: {e}")

    def _dispatch_output(self, pane_id: str, data: bytes) -> None:
        for callback in list(self._output_callbacks.get(pane_id, ())):
            try:
                callback(data)
            except Exception as e:
                logger.error(format_pane_log("Workspace", pane_id, f"output callback failed: {e}"))

    # === 查询 ===

    def get_tab(self, tab_id: str) -> TabPaneState | None:
        return self._tabs.get(tab_id)

    def tab_ids(self) -> list[str]:
        return list(self._tabs.keys())

    @property
    def active_tab_id(self) -> str | None:
        return self._active_tab_id

    def get_active(self, tab_id: str) -> str | None:
        return self._tracker.get_active(tab_id)

    def tab_of(self, pane_id: str) -> str | None:
        return self._pane_tab.get(pane_id)

    def get_coordinator(self, pane_id: str) -> SessionCoordinator | None:
        return self._coordinators.get(pane_id)

    def get_phase(self, pane_id: str) -> SessionPhase | None:
        coordinator = self._coordinators.get(pane_id)
        return coordinator.phase if coordinator else None

    def snapshot(self, tab_id: str) -> dict | None:
        """树结构加上每个叶子的生命周期状态，供渲染端使用"""
        state = self._tabs.get(tab_id)
        if state is None:
            return None
        data = tab_to_dict(state)
        panes = {}
        for pane_id in collect_leaf_ids(state.root):
            coordinator = self._coordinators.get(pane_id)
            panes[pane_id] = coordinator.snapshot() if coordinator else {
                "pane_id": pane_id,
                "phase": SessionPhase.IDLE.value,
            }
        data["panes"] = panes
        return data

    def snapshot_all(self) -> list[dict]:
        return [self.snapshot(tab_id) for tab_id in self._tabs]

    # === Tab 操作 ===

    def open_tab(
        self,
        shell: str = DEFAULT_SHELL,
        distro: str | None = None,
        cwd: str | None = None,
        *,
        tab_id: str | None = None,
    ) -> TabPaneState:
        """打开一个只含新终端的 tab"""
        root, active = tree.initialize(shell, distro, cwd)
        return self._add_tab(tab_id or new_id(), root, active)

    def restore_tab(
        self,
        pane_id: str,
        shell: str,
        distro: str | None = None,
        cwd: str | None = None,
        *,
        tab_id: str | None = None,
    ) -> TabPaneState | None:
        """打开绑定到已运行会话的 tab（分离交接）"""
        if pane_id in self._pane_tab or pane_id in self._coordinators:
            logger.error(format_pane_log("Workspace", pane_id, "restore_tab: pane already open"))
            self._count_error("restore_tab", "pane_in_use")
            return None
        root, active = tree.restore(pane_id, shell, distro, cwd)
        return self._add_tab(tab_id or new_id(), root, active)

    def open_layout(self, root: PaneNode, *, tab_id: str | None = None) -> TabPaneState:
        """用现成的树打开 tab（恢复已保存会话）"""
        return self._add_tab(tab_id or new_id(), root, tree.first_terminal_id(root))

    def _add_tab(self, tab_id: str, root: PaneNode, active: str) -> TabPaneState:
        if tab_id in self._tabs:
            raise InvalidTree(f"tab already open: {tab_id}")
        state = TabPaneState(tab_id=tab_id, root=root, active_pane_id=active)
        self._commit(state)
        if self._active_tab_id is None:
            self._active_tab_id = tab_id
        logger.info(f"[Workspace] Opened tab {short_id(tab_id)} ({len(self._tabs)} open)")
        return state

    async def close_tab(self, tab_id: str, reason: RemovalReason = RemovalReason.TAB_CLOSED) -> bool:
        """关闭 tab 及其中所有会话"""
        state = self._tabs.pop(tab_id, None)
        if state is None:
            logger.error(f"[Workspace] close_tab: {TabNotFound(tab_id)}")
            self._count_error("close_tab", "tab_not_found")
            return False

        self._tracker.forget(tab_id)
        if self._active_tab_id == tab_id:
            self._active_tab_id = next(reversed(self._tabs), None)
        for pane_id in collect_leaf_ids(state.root):
            self._pane_tab.pop(pane_id, None)
            self._removal_reasons.setdefault(pane_id, reason)

        logger.info(f"[Workspace] Closed tab {short_id(tab_id)} ({reason.value})")
        self._notify_change(tab_id)
        await self.sync_sessions(tab_id)
        return True

    def set_active_tab(self, tab_id: str) -> bool:
        """标记前端正在显示的 tab，随会话一起保存"""
        if tab_id not in self._tabs:
            self._reject("set_active_tab", tab_id, TabNotFound(tab_id))
            return False
        if self._active_tab_id != tab_id:
            self._active_tab_id = tab_id
            logger.debug(f"[Workspace] Active tab {short_id(tab_id)}")
            self._notify_change(tab_id)
        return True

    # === Pane 操作 ===

    def split(
        self,
        tab_id: str,
        pane_id: str,
        orientation: Orientation | str,
        shell: str = DEFAULT_SHELL,
        distro: str | None = None,
    ) -> str | None:
        """分屏，新 pane 成为激活 pane

        Returns:
            新 pane id，操作被忽略时为 None
        """
        try:
            state = self._require_tab(tab_id)
            new_root, new_pane_id = tree.split(state.root, pane_id, orientation, shell, distro)
        except (TreeError, TabNotFound, ValueError) as e:
            self._reject("split", tab_id, e)
            return None

        self._commit(replace(state, root=new_root, active_pane_id=new_pane_id))
        logger.info(format_pane_log("Workspace", pane_id, f"Split {Orientation(orientation).value} → {short_id(new_pane_id)}"))
        return new_pane_id

    def close_pane(self, tab_id: str, pane_id: str) -> bool:
        """从 tab 中移除 pane

        Returns:
            tab 已无 pane、需由上层关闭时为 True；这里不关闭 tab
        """
        return self._remove_pane(tab_id, pane_id, RemovalReason.PANE_CLOSED)

    def _remove_pane(self, tab_id: str, pane_id: str, reason: RemovalReason) -> bool:
        try:
            state = self._require_tab(tab_id)
            result = tree.close(state.root, pane_id, state.active_pane_id)
        except (TreeError, TabNotFound) as e:
            self._reject("close_pane", tab_id, e)
            return False

        if result.close_owner_tab:
            logger.info(format_pane_log("Workspace", pane_id, "Last pane closed, tab close requested"))
            self._notify_tab_close(tab_id)
            return True

        for removed in result.removed_ids:
            self._removal_reasons[removed] = reason
        self._commit(replace(state, root=result.root, active_pane_id=result.active_pane_id))
        logger.info(format_pane_log("Workspace", pane_id, f"Closed ({len(result.removed_ids)} session(s))"))
        return False

    def set_active(self, tab_id: str, pane_id: str) -> bool:
        try:
            state = self._require_tab(tab_id)
            self._tracker.set_active(tab_id, pane_id, state.root)
        except (TreeError, TabNotFound) as e:
            self._reject("set_active", tab_id, e)
            return False

        if state.active_pane_id != pane_id:
            self._tabs[tab_id] = replace(state, active_pane_id=pane_id)
            self._notify_change(tab_id)
        return True

    def update_cwd(self, tab_id: str, pane_id: str, cwd: str) -> bool:
        try:
            state = self._require_tab(tab_id)
            new_root = tree.update_cwd(state.root, pane_id, cwd)
        except (TreeError, TabNotFound) as e:
            self._reject("update_cwd", tab_id, e)
            return False

        if new_root is not state.root:
            self._commit(replace(state, root=new_root))
        return True

    def resize_split(self, tab_id: str, split_id: str, sizes: list[float]) -> bool:
        """保存拖动分隔条得到的比例"""
        try:
            state = self._require_tab(tab_id)
            new_root = tree.set_sizes(state.root, split_id, sizes)
        except (TreeError, TabNotFound) as e:
            self._reject("resize_split", tab_id, e)
            return False

        self._commit(replace(state, root=new_root))
        return True

    async def detach_pane(self, tab_id: str, pane_id: str) -> DetachedPane | None:
        """把 pane 移出本 workspace，会话保持运行

        分离 tab 中唯一的 pane 时 tab 一并移除。
        """
        try:
            state = self._require_tab(tab_id)
            node = find_terminal(state.root, pane_id)
        except (TreeError, TabNotFound) as e:
            self._reject("detach_pane", tab_id, e)
            return None

        coordinator = self._coordinators.get(pane_id)
        cwd = coordinator.state.cwd if coordinator and coordinator.state.cwd else node.cwd
        record = DetachedPane(pane_id=pane_id, shell=node.shell, distro=node.distro, cwd=cwd)

        if state.root.id == pane_id:
            self._removal_reasons[pane_id] = RemovalReason.DETACHED
            await self.close_tab(tab_id, reason=RemovalReason.DETACHED)
        elif not self._remove_pane(tab_id, pane_id, RemovalReason.DETACHED):
            await self.sync_sessions(tab_id)

        if METRICS_ENABLED:
            metrics.inc("workspace.detached")
        logger.info(format_pane_log("Workspace", pane_id, "Detached"))
        return record

    # === 会话 I/O ===

    async def write(self, pane_id: str, data: bytes | str) -> bool:
        coordinator = self._coordinators.get(pane_id)
        if coordinator is None:
            return False
        return await coordinator.write(data)

    def request_resize(self, pane_id: str, cols: int, rows: int) -> bool:
        coordinator = self._coordinators.get(pane_id)
        if coordinator is None:
            return False
        coordinator.request_resize(cols, rows)
        return True

    # === 会话对齐 ===

    async def sync_sessions(self, tab_id: str) -> dict[str, list[str]]:
        """让 tab 的 coordinator 与当前叶子对齐

        新叶子创建并启动 coordinator；pane 已离开树的 coordinator 按移除时
        记录的原因关闭。

        Returns:
            {"started": [...], "closed": [...]} pane id 列表
        """
        state = self._tabs.get(tab_id)
        leaf_ids = collect_leaf_ids(state.root) if state else []
        live = set(leaf_ids)

        stale = [
            pane_id for pane_id, owner in self._coordinator_tab.items()
            if owner == tab_id and pane_id not in live
        ]
        closing: list[tuple[SessionCoordinator, RemovalReason]] = []
        for pane_id in stale:
            coordinator = self._coordinators.pop(pane_id)
            del self._coordinator_tab[pane_id]
            reason = self._removal_reasons.pop(pane_id, RemovalReason.PANE_CLOSED)
            closing.append((coordinator, reason))
            self._output_callbacks.pop(pane_id, None)

        starting: list[SessionCoordinator] = []
        if state is not None:
            for node in tree.iter_terminals(state.root):
                if node.id not in self._coordinators:
                    coordinator = self._create_coordinator(node)
                    self._coordinators[node.id] = coordinator
                    self._coordinator_tab[node.id] = tab_id
                    starting.append(coordinator)

        # 清理从未创建 coordinator 的 pane 的移除原因
        for pane_id in [p for p in self._removal_reasons if p not in self._coordinators and p not in self._pane_tab]:
            self._removal_reasons.pop(pane_id, None)

        await asyncio.gather(
            *(coordinator.close(reason) for coordinator, reason in closing),
            *(coordinator.start() for coordinator in starting),
        )

        if closing or starting:
            logger.debug(
                f"[Workspace] Synced tab {short_id(tab_id)}: "
                f"+{len(starting)} -{len(closing)} sessions"
            )
        return {
            "started": [c.pane_id for c in starting],
            "closed": [c.pane_id for c, _ in closing],
        }

    async def sync_all(self) -> None:
        for tab_id in list(self._tabs):
            await self.sync_sessions(tab_id)

    def _create_coordinator(self, node: TerminalNode) -> SessionCoordinator:
        pane_id = node.id
        return SessionCoordinator(
            node,
            self.backend,
            on_output=lambda data: self._dispatch_output(pane_id, data),
            on_cwd_change=self._on_session_cwd,
            on_phase_change=self._on_session_phase,
            is_node_alive=self._is_node_alive,
            resize_delay=self._resize_delay,
        )

    def _is_node_alive(self, pane_id: str) -> bool:
        return pane_id in self._pane_tab

    def _on_session_cwd(self, pane_id: str, cwd: str) -> None:
        tab_id = self._pane_tab.get(pane_id)
        if tab_id is not None:
            self.update_cwd(tab_id, pane_id, cwd)

    def _on_session_phase(self, pane_id: str, old: SessionPhase, new: SessionPhase) -> None:
        tab_id = self._pane_tab.get(pane_id)
        if tab_id is not None:
            self._notify_change(tab_id)

    async def shutdown(self) -> None:
        """关闭所有 tab 并终止所有会话"""
        for tab_id in list(self._tabs):
            await self.close_tab(tab_id, reason=RemovalReason.SHUTDOWN)
        leftovers = list(self._coordinators.values())
        self._coordinators.clear()
        self._coordinator_tab.clear()
        for coordinator in leftovers:
            await coordinator.close(RemovalReason.SHUTDOWN)
        logger.info("[Workspace] Shut down")

    # === 内部方法 ===

    def _require_tab(self, tab_id: str) -> TabPaneState:
        state = self._tabs.get(tab_id)
        if state is None:
            raise TabNotFound(tab_id)
        return state

    def _commit(self, state: TabPaneState) -> None:
        """保存 tab 新状态并重建叶子索引"""
        tab_id = state.tab_id
        previous = self._tabs.get(tab_id)
        if previous is not None:
            for pane_id in collect_leaf_ids(previous.root):
                self._pane_tab.pop(pane_id, None)
        for pane_id in collect_leaf_ids(state.root):
            self._pane_tab[pane_id] = tab_id

        self._tabs[tab_id] = state
        self._tracker.assign(tab_id, state.active_pane_id)
        self._notify_change(tab_id)

    def _reject(self, op: str, tab_id: str, error: Exception) -> None:
        logger.error(f"[Workspace] {op} ignored in tab {short_id(tab_id)}: {error}")
        kind = "tab_not_found" if isinstance(error, TabNotFound) else type(error).__name__
        self._count_error(op, kind)

    def _count_error(self, op: str, kind: str) -> None:
        if METRICS_ENABLED:
            metrics.inc("tree.node_not_found", {"op": op, "kind": kind})
