"""PTY Backend 抽象接口

后端持有真正的 shell 进程，termpanes 只通过 session id（即终端 pane 的
id）来寻址。

设计原则：
1. 最小接口：spawn / reattach / write / resize / terminate
2. 输出按 session id 推送给订阅者
3. 异步优先：所有 IO 操作都是 async
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from ..session.types import Dimensions
from ..telemetry import get_logger

logger = get_logger(__name__)

# 接收单个会话的原始输出 chunk
OutputCallback = Callable[[bytes], Any]


class PtyBackend(ABC):
    """PTY 后端接口

    Usage:
        backend = LocalPtyBackend()
        backend.subscribe(pane_id, on_chunk)
        dims = await backend.spawn(pane_id, "bash", None, "/tmp")
        await backend.write(pane_id, b"ls\\n")
        await backend.terminate(pane_id)
    """

    def __init__(self):
        self._subscribers: dict[str, list[OutputCallback]] = {}

    @property
    @abstractmethod
    def name(self) -> str:
        """后端名称（如 "local"）"""

    @abstractmethod
    async def spawn(
        self,
        session_id: str,
        shell: str,
        distro: str | None = None,
        cwd: str | None = None,
    ) -> Dimensions:
        """启动新会话

        Returns:
            PTY 打开时的尺寸

        Raises:
            SpawnFailed: 会话无法启动
        """

    @abstractmethod
    async def reattach(self, session_id: str) -> bytes | None:
        """获取运行中会话的缓冲输出

        Returns:
            滚动缓冲字节，后端没有缓冲时为 None

        Raises:
            ReattachBufferUnavailable: 缓冲读取失败
        """

    @abstractmethod
    async def write(self, session_id: str, data: bytes) -> None:
        """发送用户输入到会话"""

    @abstractmethod
    async def resize(self, session_id: str, cols: int, rows: int) -> None:
        """调整会话 PTY 尺寸

        Raises:
            ResizeFailed
        """

    @abstractmethod
    async def terminate(self, session_id: str) -> None:
        """终止会话，未知 id 忽略"""

    @abstractmethod
    def has_session(self, session_id: str) -> bool:
        """后端当前是否在运行该会话"""

    async def close(self) -> None:
        """关闭时释放后端资源，默认无操作"""

    # === 输出订阅 ===

    def subscribe(self, session_id: str, callback: OutputCallback) -> None:
        """注册会话输出 chunk 的接收者"""
        self._subscribers.setdefault(session_id, []).append(callback)

    def unsubscribe(self, session_id: str, callback: OutputCallback) -> None:
        callbacks = self._subscribers.get(session_id)
        if not callbacks:
            return
        try:
            callbacks.remove(callback)
        except ValueError:
            return
        if not callbacks:
            del self._subscribers[session_id]

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, ()))

    def _publish(self, session_id: str, chunk: bytes) -> None:
        """把 chunk 分发给 ``session_id`` 的所有订阅者

        单个订阅者失败只记录日志，不影响其他订阅者。
        """
        for callback in list(self._subscribers.get(session_id, ())):
            try:
                callback(chunk)
            except Exception as e:
                logger.error(f"[Backend:{session_id[:8]}] Output subscriber failed: {e}")
