"""Web 服务器 - 基于 Workspace 的 host API

REST 路由驱动 pane 树；每次变更后 ``/ws`` 收到 tab 快照，
``/ws/panes/{pane_id}`` 双向传输单个 pane 的终端流。
"""

import asyncio

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from ..layout import TabPaneState
from ..telemetry import format_pane_log, get_logger, metrics
from ..workspace import Workspace
from .handlers import PaneMessageHandler
from .models import (
    ActionResponse,
    OpenTabRequest,
    PaneRequest,
    ResizeSplitRequest,
    RestoreTabRequest,
    SplitRequest,
)

logger = get_logger(__name__)


class WebServer:
    """绑定一个 workspace 的 FastAPI 应用"""

    def __init__(self, workspace: Workspace):
        self.app = FastAPI(title="termpanes")
        self.workspace = workspace
        self.clients: list[WebSocket] = []
        self._broadcast_tasks: set[asyncio.Task] = set()

        self._setup_routes()
        workspace.on_change(self._on_workspace_change)

    def _on_workspace_change(self, tab_id: str, state: TabPaneState | None) -> None:
        if not self.clients:
            return
        if state is None:
            message = {"type": "tab_closed", "tab_id": tab_id}
        else:
            message = {"type": "tab", "tab": self.workspace.snapshot(tab_id)}
        try:
            task = asyncio.get_running_loop().create_task(self.broadcast(message))
        except RuntimeError:
            return
        self._broadcast_tasks.add(task)
        task.add_done_callback(self._broadcast_tasks.discard)

    async def broadcast(self, data: dict) -> None:
        """广播消息到所有 ``/ws`` 客户端"""
        for client in list(self.clients):
            try:
                await client.send_json(data)
            except Exception as e:
                logger.debug(f"[Web] Dropping client after send failure: {e}")
                if client in self.clients:
                    self.clients.remove(client)

    def _setup_routes(self):
        workspace = self.workspace

        # === Tab 路由 ===

        @self.app.get("/api/tabs")
        async def list_tabs():
            return {"tabs": workspace.snapshot_all()}

        @self.app.get("/api/tabs/{tab_id}", response_model=ActionResponse)
        async def get_tab(tab_id: str):
            snapshot = workspace.snapshot(tab_id)
            if snapshot is None:
                return ActionResponse(success=False, message=f"tab not found: {tab_id}")
            return ActionResponse(success=True, data=snapshot)

        @self.app.post("/api/tabs", response_model=ActionResponse)
        async def open_tab(request: OpenTabRequest):
            state = workspace.open_tab(request.shell, request.distro, request.cwd)
            await workspace.sync_sessions(state.tab_id)
            return ActionResponse(success=True, data=workspace.snapshot(state.tab_id))

        @self.app.post("/api/tabs/restore", response_model=ActionResponse)
        async def restore_tab(request: RestoreTabRequest):
            state = workspace.restore_tab(request.pane_id, request.shell, request.distro, request.cwd)
            if state is None:
                return ActionResponse(success=False, message=f"pane already open: {request.pane_id}")
            await workspace.sync_sessions(state.tab_id)
            return ActionResponse(success=True, data=workspace.snapshot(state.tab_id))

        @self.app.delete("/api/tabs/{tab_id}", response_model=ActionResponse)
        async def close_tab(tab_id: str):
            closed = await workspace.close_tab(tab_id)
            return ActionResponse(success=closed)

        @self.app.post("/api/tabs/{tab_id}/activate", response_model=ActionResponse)
        async def activate_tab(tab_id: str):
            return ActionResponse(
                success=workspace.set_active_tab(tab_id),
                data={"active_tab_id": workspace.active_tab_id},
            )

        # === Pane 路由 ===

        @self.app.post("/api/tabs/{tab_id}/split", response_model=ActionResponse)
        async def split(tab_id: str, request: SplitRequest):
            new_pane_id = workspace.split(
                tab_id, request.pane_id, request.orientation, request.shell, request.distro
            )
            if new_pane_id is None:
                return ActionResponse(success=False, message="split ignored")
            await workspace.sync_sessions(tab_id)
            return ActionResponse(
                success=True,
                data={"pane_id": new_pane_id, "tab": workspace.snapshot(tab_id)},
            )

        @self.app.post("/api/tabs/{tab_id}/close", response_model=ActionResponse)
        async def close_pane(tab_id: str, request: PaneRequest):
            before = workspace.get_tab(tab_id)
            close_owner_tab = workspace.close_pane(tab_id, request.pane_id)
            changed = workspace.get_tab(tab_id) is not before
            if changed:
                await workspace.sync_sessions(tab_id)
            return ActionResponse(
                success=before is not None and (close_owner_tab or changed),
                data={"close_tab": close_owner_tab},
            )

        @self.app.post("/api/tabs/{tab_id}/focus", response_model=ActionResponse)
        async def focus(tab_id: str, request: PaneRequest):
            return ActionResponse(success=workspace.set_active(tab_id, request.pane_id))

        @self.app.post("/api/tabs/{tab_id}/sizes", response_model=ActionResponse)
        async def resize_split(tab_id: str, request: ResizeSplitRequest):
            return ActionResponse(success=workspace.resize_split(tab_id, request.split_id, request.sizes))

        @self.app.post("/api/tabs/{tab_id}/detach", response_model=ActionResponse)
        async def detach(tab_id: str, request: PaneRequest):
            record = await workspace.detach_pane(tab_id, request.pane_id)
            if record is None:
                return ActionResponse(success=False, message="detach ignored")
            return ActionResponse(success=True, data=record.to_dict())

        @self.app.get("/api/status")
        async def status():
            return {
                "backend": workspace.backend.name,
                "tabs": len(workspace.tab_ids()),
                "active_tab_id": workspace.active_tab_id,
                "metrics": metrics.get_all_counters(),
            }

        # === WebSockets ===

        @self.app.websocket("/ws")
        async def websocket_endpoint(websocket: WebSocket):
            await websocket.accept()
            self.clients.append(websocket)
            try:
                await websocket.send_json({"type": "tabs", "tabs": workspace.snapshot_all()})
                while True:
                    await websocket.receive_text()
            except WebSocketDisconnect:
                pass
            finally:
                if websocket in self.clients:
                    self.clients.remove(websocket)

        @self.app.websocket("/ws/panes/{pane_id}")
        async def pane_socket(websocket: WebSocket, pane_id: str):
            await websocket.accept()
            if workspace.get_coordinator(pane_id) is None:
                await websocket.send_json({"type": "error", "message": f"pane not found: {pane_id}"})
                await websocket.close(code=4404)
                return

            queue: asyncio.Queue[bytes] = asyncio.Queue()
            workspace.subscribe_output(pane_id, queue.put_nowait)
            handler = PaneMessageHandler(workspace, pane_id)

            async def pump_output():
                while True:
                    chunk = await queue.get()
                    await websocket.send_bytes(chunk)

            sender = asyncio.create_task(pump_output())
            logger.debug(format_pane_log("WS", pane_id, "Attached"))
            try:
                while True:
                    msg = await websocket.receive_json()
                    await handler.handle(websocket, msg)
            except WebSocketDisconnect:
                pass
            finally:
                workspace.unsubscribe_output(pane_id, queue.put_nowait)
                sender.cancel()
                logger.debug(format_pane_log("WS", pane_id, "Detached"))
