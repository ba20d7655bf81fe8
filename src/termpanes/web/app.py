"""FastAPI 应用初始化"""

import asyncio
from pathlib import Path

import uvicorn

from .. import config
from ..backend import LocalPtyBackend, PtyBackend
from ..telemetry import configure_logging, get_logger
from ..workspace import Workspace, load_session, restore_session, save_session
from .server import WebServer

logger = get_logger(__name__)


def create_app(workspace: Workspace) -> WebServer:
    """创建 Web 应用"""
    return WebServer(workspace)


async def start_server(
    host: str = config.WEB_HOST,
    port: int = config.WEB_PORT,
    *,
    backend: PtyBackend | None = None,
    session_path: Path | None = None,
) -> None:
    """启动服务器

    启动时恢复已保存的布局（含当前激活的 tab），退出时写回。
    """
    backend = backend or LocalPtyBackend()
    workspace = Workspace(backend)
    server = create_app(workspace)

    saved = load_session(session_path)
    if saved is not None and saved.tabs:
        opened, active_tab_id = restore_session(workspace, saved)
        await workspace.sync_all()
        logger.info(f"[App] Restored {len(opened)} tabs (active {active_tab_id})")
    else:
        state = workspace.open_tab()
        await workspace.sync_sessions(state.tab_id)

    uvicorn_config = uvicorn.Config(server.app, host=host, port=port, log_level=config.LOG_LEVEL.lower())
    uvicorn_server = uvicorn.Server(uvicorn_config)
    logger.info(f"[App] termpanes listening on http://{host}:{port}")

    try:
        await uvicorn_server.serve()
    finally:
        save_session(workspace, session_path, active_tab_id=workspace.active_tab_id)
        await workspace.shutdown()
        await backend.close()


def main():
    """入口函数"""
    configure_logging()
    try:
        asyncio.run(start_server())
    except KeyboardInterrupt:
        logger.info("[App] Server stopped")
