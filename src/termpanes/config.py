"""termpanes 配置

配置分为以下几类：
- 布局配置：分屏比例
- Shell 配置：默认 shell 与 profile 表
- 会话配置：终端尺寸、resize 防抖、重连缓冲
- 持久化配置：工作区保存位置
- 日志 / 指标配置
- Web 配置：host API 监听地址
"""

import os
from pathlib import Path

# === 布局配置 ===
SIZE_TOTAL = 100.0  # split 子节点 sizes 之和
SPLIT_SIZES = (50.0, 50.0)  # 新分屏的初始比例

# === Shell 配置 ===
DEFAULT_SHELL = os.environ.get("TERMPANES_SHELL", "bash")

# selector -> argv；未知 selector 按程序路径执行
SHELL_PROFILES: dict[str, list[str]] = {
    "bash": ["bash", "-l"],
    "zsh": ["zsh", "-l"],
    "fish": ["fish", "-l"],
    "sh": ["sh"],
}

# === 会话配置 ===
DEFAULT_COLS = 80
DEFAULT_ROWS = 24
RESIZE_DEBOUNCE_SECONDS = 0.05  # resize 防抖间隔（秒）
OUTPUT_BUFFER_MAX_BYTES = 100 * 1024  # 重连用的滚动缓冲上限
OUTPUT_READ_SIZE = 4096
OSC7_MAX_PENDING_BYTES = 4096  # 未结束的 OSC 7 序列超过此长度即丢弃
SESSION_HISTORY_MAX_LENGTH = 20
TERMINATE_GRACE_SECONDS = 1.0  # SIGHUP 后等待多久再 SIGKILL（秒）

# === 持久化配置 ===
PERSIST_DIR = Path.home() / ".termpanes"
PERSIST_FILE = PERSIST_DIR / "session.json"
PERSIST_VERSION = 1

# === 日志配置 ===
LOG_LEVEL = os.environ.get("TERMPANES_LOG_LEVEL", "INFO")

# === 指标配置 ===
METRICS_ENABLED = True  # 是否启用指标收集

# === Web 配置 ===
WEB_HOST = os.environ.get("TERMPANES_HOST", "127.0.0.1")
WEB_PORT = int(os.environ.get("TERMPANES_PORT", "8766"))
