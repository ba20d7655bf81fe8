"""Pane WebSocket 消息处理器

渲染端发给单个 pane 的消息：
    {"type": "input", "data": "ls\\r"}
    {"type": "resize", "cols": 120, "rows": 40}
"""

from dataclasses import dataclass

from fastapi import WebSocket

from ..telemetry import format_pane_log, get_logger
from ..workspace import Workspace

logger = get_logger(__name__)


@dataclass
class PaneMessageHandler:
    """把一个 pane socket 的消息转给对应会话"""

    workspace: Workspace
    pane_id: str

    async def handle(self, websocket: WebSocket, msg: dict) -> None:
        msg_type = msg.get("type")
        if msg_type == "input":
            await self._handle_input(msg)
        elif msg_type == "resize":
            await self._handle_resize(websocket, msg)
        else:
            logger.debug(format_pane_log("WS", self.pane_id, f"Unknown message type: {msg_type!r}"))
            await websocket.send_json({"type": "error", "message": f"unknown message type: {msg_type}"})

    async def _handle_input(self, msg: dict) -> None:
        data = msg.get("data")
        if not isinstance(data, str) or not data:
            return
        await self.workspace.write(self.pane_id, data)

    async def _handle_resize(self, websocket: WebSocket, msg: dict) -> None:
        try:
            cols = int(msg["cols"])
            rows = int(msg["rows"])
        except (KeyError, TypeError, ValueError):
            await websocket.send_json({"type": "error", "message": "resize needs integer cols and rows"})
            return
        self.workspace.request_resize(self.pane_id, cols, rows)
