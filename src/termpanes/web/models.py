"""host API 的请求 / 响应模型"""

from pydantic import BaseModel

from ..config import DEFAULT_SHELL


class OpenTabRequest(BaseModel):
    shell: str = DEFAULT_SHELL
    distro: str | None = None
    cwd: str | None = None


class RestoreTabRequest(BaseModel):
    """在新 tab 中重新打开已分离 pane 的运行中会话"""

    pane_id: str
    shell: str = DEFAULT_SHELL
    distro: str | None = None
    cwd: str | None = None


class SplitRequest(BaseModel):
    pane_id: str
    orientation: str = "horizontal"  # "horizontal" | "vertical"
    shell: str = DEFAULT_SHELL
    distro: str | None = None


class PaneRequest(BaseModel):
    pane_id: str


class ResizeSplitRequest(BaseModel):
    split_id: str
    sizes: list[float]


class ActionResponse(BaseModel):
    """结构操作的结果

    对未知 tab 或 pane 的操作返回 ``success=False``，请求本身不失败。
    """

    success: bool
    message: str = ""
    data: dict | None = None
