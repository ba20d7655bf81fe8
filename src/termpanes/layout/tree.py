"""Pane tree operations

Every function here is pure: it takes a tree (and ids) and returns a new
tree, never touching the PTY backend and never mutating its input.

Addressing is always by node id, never by position. Lookups and
substitutions are depth-first and stop at the first match; substitution
copies only the nodes on the root-to-target path and shares every other
subtree by reference.
"""

from collections.abc import Iterator
from dataclasses import replace

from ..config import SIZE_TOTAL, SPLIT_SIZES
from ..core.ids import new_id
from ..errors import InvalidTree, NodeNotFound, NotATerminal
from .types import CloseResult, Orientation, PaneNode, SplitNode, TerminalNode


# === Lookup ===


def find_node(root: PaneNode, pane_id: str) -> PaneNode | None:
    """Find a node by id anywhere under ``root``."""
    if root.id == pane_id:
        return root
    if isinstance(root, SplitNode):
        for child in root.children:
            found = find_node(child, pane_id)
            if found is not None:
                return found
    return None


def find_parent(root: PaneNode, pane_id: str) -> tuple[SplitNode, int] | None:
    """Find the split holding ``pane_id`` and the child index within it.

    Returns:
        (parent, index), or None when the id is the root or absent
    """
    if not isinstance(root, SplitNode):
        return None
    for index, child in enumerate(root.children):
        if child.id == pane_id:
            return root, index
        found = find_parent(child, pane_id)
        if found is not None:
            return found
    return None


def find_terminal(root: PaneNode, pane_id: str) -> TerminalNode:
    """Resolve ``pane_id`` to a terminal node.

    Raises:
        NodeNotFound: id is not in the tree
        NotATerminal: id names a split node
    """
    node = find_node(root, pane_id)
    if node is None:
        raise NodeNotFound(pane_id)
    if not isinstance(node, TerminalNode):
        raise NotATerminal(pane_id)
    return node


def iter_terminals(root: PaneNode) -> Iterator[TerminalNode]:
    """Yield terminal leaves depth-first, left to right."""
    if isinstance(root, TerminalNode):
        yield root
        return
    for child in root.children:
        yield from iter_terminals(child)


def collect_leaf_ids(root: PaneNode) -> list[str]:
    """Terminal ids in depth-first, left-to-right order."""
    return [node.id for node in iter_terminals(root)]


def first_terminal_id(root: PaneNode) -> str:
    """Id of the leftmost (first depth-first) terminal leaf."""
    return next(iter_terminals(root)).id


def count_leaves(root: PaneNode) -> int:
    return sum(1 for _ in iter_terminals(root))


# === Substitution ===


def replace_node(root: PaneNode, target_id: str, new_node: PaneNode) -> PaneNode:
    """Substitute the subtree identified by ``target_id``.

    Only ancestors of the target are rebuilt. If the id is absent the
    original root object is returned unchanged.
    """
    if root.id == target_id:
        return new_node
    if isinstance(root, SplitNode):
        for index, child in enumerate(root.children):
            replaced = replace_node(child, target_id, new_node)
            if replaced is not child:
                children = root.children[:index] + (replaced,) + root.children[index + 1:]
                return replace(root, children=children)
    return root


# === Tab operations ===


def initialize(
    shell: str,
    distro: str | None = None,
    cwd: str | None = None,
    *,
    pane_id: str | None = None,
) -> tuple[TerminalNode, str]:
    """Create the single-terminal tree of a newly opened tab.

    Returns:
        (root, active_pane_id)
    """
    root = TerminalNode(id=pane_id or new_id(), shell=shell, distro=distro, cwd=cwd)
    return root, root.id


def restore(
    existing_id: str,
    shell: str,
    distro: str | None = None,
    cwd: str | None = None,
) -> tuple[TerminalNode, str]:
    """Create a single-terminal tree bound to an already running session.

    Used when a detached window's pane is folded back into a tab: the node
    reuses the session id and is flagged to reattach instead of spawning.
    """
    root = TerminalNode(id=existing_id, shell=shell, distro=distro, cwd=cwd, reattach=True)
    return root, root.id


def split(
    root: PaneNode,
    target_id: str,
    orientation: Orientation | str,
    shell: str,
    distro: str | None = None,
    *,
    cwd: str | None = None,
    new_pane_id: str | None = None,
) -> tuple[PaneNode, str]:
    """Split a terminal pane in two.

    The target is replaced in place by a split whose children are the
    original terminal and a new terminal, sized ``SPLIT_SIZES``.

    Returns:
        (new_root, new_pane_id). The new pane is the one to activate.

    Raises:
        NodeNotFound, NotATerminal
    """
    target = find_terminal(root, target_id)
    new_terminal = TerminalNode(id=new_pane_id or new_id(), shell=shell, distro=distro, cwd=cwd)
    split_node = SplitNode(
        id=new_id(),
        orientation=Orientation(orientation),
        children=(target, new_terminal),
        sizes=SPLIT_SIZES,
    )
    return replace_node(root, target_id, split_node), new_terminal.id


def close(root: PaneNode, target_id: str, active_pane_id: str) -> CloseResult:
    """Remove a pane (or a whole subtree) from the tree.

    Remaining siblings share the parent's space equally. A split left with
    a single child is replaced by that child. If the active pane left the
    tree, the leftmost remaining terminal becomes active.

    Closing a terminal root leaves nothing to collapse into: the tree is
    returned untouched with ``close_owner_tab`` set. A split root is not a
    pane and cannot be closed.

    Raises:
        NodeNotFound: target is not in the tree
    """
    if root.id == target_id:
        if not isinstance(root, TerminalNode):
            raise NodeNotFound(target_id)
        return CloseResult(root=root, active_pane_id=active_pane_id, close_owner_tab=True)

    parent_info = find_parent(root, target_id)
    if parent_info is None:
        raise NodeNotFound(target_id)
    parent, index = parent_info

    removed_ids = tuple(collect_leaf_ids(parent.children[index]))
    remaining = parent.children[:index] + parent.children[index + 1:]

    replacement: PaneNode
    if len(remaining) == 1:
        replacement = remaining[0]
    else:
        share = SIZE_TOTAL / len(remaining)
        replacement = replace(parent, children=remaining, sizes=(share,) * len(remaining))

    if parent.id == root.id:
        new_root = replacement
    else:
        new_root = replace_node(root, parent.id, replacement)

    new_active = active_pane_id
    active_node = find_node(new_root, active_pane_id)
    if active_node is None or not isinstance(active_node, TerminalNode):
        new_active = first_terminal_id(new_root)

    return CloseResult(
        root=new_root,
        active_pane_id=new_active,
        close_owner_tab=False,
        removed_ids=removed_ids,
    )


def set_active(root: PaneNode, pane_id: str) -> str:
    """Validate that ``pane_id`` is a terminal of this tree.

    Raises:
        NodeNotFound, NotATerminal
    """
    return find_terminal(root, pane_id).id


def update_cwd(root: PaneNode, pane_id: str, cwd: str) -> PaneNode:
    """Record a terminal's working directory.

    Returns the same root object when the cwd did not change.

    Raises:
        NodeNotFound, NotATerminal
    """
    node = find_terminal(root, pane_id)
    if node.cwd == cwd:
        return root
    return replace_node(root, pane_id, replace(node, cwd=cwd))


def set_sizes(root: PaneNode, split_id: str, sizes: list[float] | tuple[float, ...]) -> PaneNode:
    """Store new child proportions on a split (resize-handle drag).

    Sizes are scaled so they sum to ``SIZE_TOTAL``.

    Raises:
        NodeNotFound: split_id is absent
        InvalidTree: split_id is a terminal, or sizes are malformed
    """
    node = find_node(root, split_id)
    if node is None:
        raise NodeNotFound(split_id)
    if not isinstance(node, SplitNode):
        raise InvalidTree(f"{split_id} is a terminal, it has no sizes")
    if len(sizes) != len(node.children):
        raise InvalidTree(f"expected {len(node.children)} sizes, got {len(sizes)}")
    if any(s <= 0 for s in sizes):
        raise InvalidTree(f"sizes must be positive: {list(sizes)}")

    total = float(sum(sizes))
    normalized = tuple(s * SIZE_TOTAL / total for s in sizes)
    return replace_node(root, split_id, replace(node, sizes=normalized))
