"""异常层级

结构错误（``TreeError``）表示调用方引用的 pane 不在预期位置，workspace
记录日志后忽略该操作。会话错误只影响发生错误的那个 pane。
"""


class TermPanesError(Exception):
    """所有 termpanes 异常的基类"""


# === 树结构 ===


class TreeError(TermPanesError):
    """对 pane 树的非法结构操作"""


class NodeNotFound(TreeError):
    def __init__(self, pane_id: str):
        super().__init__(f"pane not found: {pane_id}")
        self.pane_id = pane_id


class NotATerminal(TreeError):
    def __init__(self, pane_id: str):
        super().__init__(f"pane is a split, not a terminal: {pane_id}")
        self.pane_id = pane_id


class InvalidTree(TreeError):
    """节点违反结构约束（如只有一个子节点的 split）"""


class TabNotFound(TermPanesError):
    def __init__(self, tab_id: str):
        super().__init__(f"tab not found: {tab_id}")
        self.tab_id = tab_id


# === 会话 ===


class SessionError(TermPanesError):
    """与 PTY 后端交互时单个会话出错"""

    def __init__(self, session_id: str, message: str = ""):
        super().__init__(message or f"session error: {session_id}")
        self.session_id = session_id


class SpawnFailed(SessionError):
    pass


class ResizeFailed(SessionError):
    pass


class ReattachBufferUnavailable(SessionError):
    pass


class SessionNotFound(SessionError):
    pass
