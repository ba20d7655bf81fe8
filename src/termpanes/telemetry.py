"""Telemetry - 统一日志和指标入口

日志格式: [Component:pane[:8]] msg
指标示例: session.spawn_failed, resize.flushed, tree.node_not_found
"""

import logging

from rich.logging import RichHandler

_LOG_FORMAT = "[%(name)s] %(message)s"


def get_logger(name: str) -> logging.Logger:
    """获取模块 logger（通常传 ``__name__``）"""
    return logging.getLogger(name)


def configure_logging(level: str | None = None) -> None:
    """为 ``termpanes`` logger 安装 rich 控制台 handler

    Args:
        level: 日志级别名，``None`` 时使用 ``config.LOG_LEVEL``
    """
    from . import config

    root = logging.getLogger("termpanes")
    root.setLevel((level or config.LOG_LEVEL).upper())
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        handler = RichHandler(show_path=False, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(handler)


def format_pane_log(component: str, pane_id: str, msg: str) -> str:
    """格式化带 pane_id 的日志消息

    Returns:
        格式化的消息: ``[component:pane_id[:8]] msg``
    """
    pane_short = pane_id[:8] if pane_id else "unknown"
    return f"[{component}:{pane_short}] {msg}"


class Metrics:
    """指标收集 facade

    内存存储的计数器和 gauge，标签拼进 key，如 ``resize.failed{pane=1a2b3c4d}``。
    """

    def __init__(self):
        self._counters: dict[str, int] = {}
        self._gauges: dict[str, float] = {}

    def inc(self, name: str, labels: dict[str, str] | None = None, value: int = 1) -> None:
        key = self._make_key(name, labels)
        self._counters[key] = self._counters.get(key, 0) + value

    def gauge(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        key = self._make_key(name, labels)
        self._gauges[key] = value

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        return self._counters.get(self._make_key(name, labels), 0)

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float:
        return self._gauges.get(self._make_key(name, labels), 0.0)

    def total(self, name: str) -> int:
        """某个计数器在所有标签组合下的总和"""
        prefix = f"{name}{{"
        return sum(
            v for k, v in self._counters.items() if k == name or k.startswith(prefix)
        )

    def reset(self) -> None:
        """清空所有指标（测试用）"""
        self._counters.clear()
        self._gauges.clear()

    def _make_key(self, name: str, labels: dict[str, str] | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def get_all_counters(self) -> dict[str, int]:
        return dict(self._counters)


metrics = Metrics()
