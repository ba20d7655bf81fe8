"""termpanes - split-pane terminal workspace

- layout: pane tree model and pure operations
- session: per-pane session lifecycle
- backend: PTY backends
- workspace: tabs, active pane, saved sessions
- web: host API
"""

__version__ = "0.1.0"
