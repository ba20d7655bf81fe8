"""Backend module

- base: PtyBackend interface and output subscriptions
- local: LocalPtyBackend on POSIX pseudo-terminals
"""

from .base import OutputCallback, PtyBackend
from .local import LocalPtyBackend, resolve_shell

__all__ = [
    "OutputCallback",
    "PtyBackend",
    "LocalPtyBackend",
    "resolve_shell",
]
