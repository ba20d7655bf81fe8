"""Pane tree data types

- Orientation: direction a split divides its space in
- TerminalNode: leaf, one shell session
- SplitNode: internal node, >= 2 children with proportional sizes
- TabPaneState: one tab's tree plus its active pane
- CloseResult: outcome of closing a pane

All nodes are frozen. A new tree version shares every untouched subtree
with the previous one, so ``old.children[i] is new.children[i]`` tells a
renderer which parts did not change.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from ..errors import InvalidTree


class Orientation(Enum):
    """Split orientation

    HORIZONTAL lays children out side by side, VERTICAL stacks them.
    """
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"


@dataclass(frozen=True)
class TerminalNode:
    """Leaf node backed by one shell session

    Attributes:
        id: Pane id, also the PTY backend session id
        shell: Shell selector (profile name or program path)
        distro: Optional environment selector passed to the backend
        cwd: Last known working directory
        reattach: Bind to an already running session instead of spawning
    """
    id: str
    shell: str
    distro: str | None = None
    cwd: str | None = None
    reattach: bool = False

    @property
    def kind(self) -> str:
        return "terminal"

    @property
    def is_terminal(self) -> bool:
        return True


@dataclass(frozen=True)
class SplitNode:
    """Internal node dividing its space among children

    Attributes:
        id: Node id
        orientation: Split direction
        children: Ordered child nodes (at least 2)
        sizes: Proportion per child, same length as children
    """
    id: str
    orientation: Orientation
    children: tuple["PaneNode", ...]
    sizes: tuple[float, ...] = field(default=())

    def __post_init__(self):
        # accept lists from callers but store tuples
        if not isinstance(self.children, tuple):
            object.__setattr__(self, "children", tuple(self.children))
        if not isinstance(self.sizes, tuple):
            object.__setattr__(self, "sizes", tuple(self.sizes))
        if len(self.children) < 2:
            raise InvalidTree(f"split {self.id} needs at least 2 children, got {len(self.children)}")
        if len(self.sizes) != len(self.children):
            raise InvalidTree(
                f"split {self.id} has {len(self.children)} children but {len(self.sizes)} sizes"
            )

    @property
    def kind(self) -> str:
        return "split"

    @property
    def is_terminal(self) -> bool:
        return False


PaneNode = Union[TerminalNode, SplitNode]


@dataclass(frozen=True)
class TabPaneState:
    """Pane layout of one open tab"""
    tab_id: str
    root: PaneNode
    active_pane_id: str


@dataclass(frozen=True)
class CloseResult:
    """Result of closing a pane

    When ``close_owner_tab`` is True the tree is returned untouched and the
    caller is expected to close the whole tab.

    Attributes:
        root: Resulting tree
        active_pane_id: Active pane after repair
        close_owner_tab: The closed pane was the tab's only terminal
        removed_ids: Terminal ids that left the tree
    """
    root: PaneNode
    active_pane_id: str
    close_owner_tab: bool = False
    removed_ids: tuple[str, ...] = ()
