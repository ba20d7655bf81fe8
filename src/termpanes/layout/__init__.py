"""Layout module

Per-tab pane trees and the pure operations over them:
- types: PaneNode variants, TabPaneState, CloseResult
- tree: initialize / restore / split / close / set_active / update_cwd
- serialize: dict form for rendering and persistence
"""

from .types import (
    Orientation,
    TerminalNode,
    SplitNode,
    PaneNode,
    TabPaneState,
    CloseResult,
)
from .tree import (
    find_node,
    find_parent,
    find_terminal,
    iter_terminals,
    collect_leaf_ids,
    first_terminal_id,
    count_leaves,
    replace_node,
    initialize,
    restore,
    split,
    close,
    set_active,
    update_cwd,
    set_sizes,
)
from .serialize import node_to_dict, node_from_dict, tab_to_dict, strip_runtime

__all__ = [
    # Types
    "Orientation",
    "TerminalNode",
    "SplitNode",
    "PaneNode",
    "TabPaneState",
    "CloseResult",
    # Lookup
    "find_node",
    "find_parent",
    "find_terminal",
    "iter_terminals",
    "collect_leaf_ids",
    "first_terminal_id",
    "count_leaves",
    "replace_node",
    # Operations
    "initialize",
    "restore",
    "split",
    "close",
    "set_active",
    "update_cwd",
    "set_sizes",
    # Serialization
    "node_to_dict",
    "node_from_dict",
    "tab_to_dict",
    "strip_runtime",
]
