"""Pane tree <-> dict conversion

The dict form is what the rendering host and the session file see:

    {"id": ..., "type": "terminal", "shell": ..., "distro": ..., "cwd": ..., "reattach": false}
    {"id": ..., "type": "split", "direction": "vertical", "children": [...], "sizes": [50, 50]}
"""

from dataclasses import replace

from ..config import SIZE_TOTAL
from ..core.ids import new_id
from ..errors import InvalidTree
from .types import Orientation, PaneNode, SplitNode, TabPaneState, TerminalNode


def node_to_dict(node: PaneNode) -> dict:
    if isinstance(node, TerminalNode):
        return {
            "id": node.id,
            "type": "terminal",
            "shell": node.shell,
            "distro": node.distro,
            "cwd": node.cwd,
            "reattach": node.reattach,
        }
    return {
        "id": node.id,
        "type": "split",
        "direction": node.orientation.value,
        "children": [node_to_dict(child) for child in node.children],
        "sizes": list(node.sizes),
    }


def node_from_dict(data: dict) -> PaneNode:
    """Build a node from its dict form.

    Raises:
        InvalidTree: unknown type, missing keys, or split invariants violated
    """
    try:
        node_type = data["type"]
        if node_type == "terminal":
            return TerminalNode(
                id=data["id"],
                shell=data["shell"],
                distro=data.get("distro"),
                cwd=data.get("cwd"),
                reattach=bool(data.get("reattach", False)),
            )
        if node_type == "split":
            children = tuple(node_from_dict(child) for child in data["children"])
            sizes = data.get("sizes")
            if sizes is None:
                sizes = [SIZE_TOTAL / len(children)] * len(children) if children else []
            return SplitNode(
                id=data["id"],
                orientation=Orientation(data["direction"]),
                children=children,
                sizes=tuple(float(s) for s in sizes),
            )
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidTree(f"malformed pane node: {e}") from e
    raise InvalidTree(f"unknown pane node type: {node_type!r}")


def tab_to_dict(state: TabPaneState) -> dict:
    return {
        "tab_id": state.tab_id,
        "active_pane_id": state.active_pane_id,
        "root": node_to_dict(state.root),
    }


def strip_runtime(node: PaneNode, *, fresh_ids: bool = True) -> PaneNode:
    """Declarative copy of a tree for saving.

    Clears ``reattach`` (a saved layout always respawns) and, by default,
    issues new ids so the copy never aliases live sessions.
    """
    if isinstance(node, TerminalNode):
        return replace(node, id=new_id() if fresh_ids else node.id, reattach=False)
    return replace(
        node,
        id=new_id() if fresh_ids else node.id,
        children=tuple(strip_runtime(child, fresh_ids=fresh_ids) for child in node.children),
    )
