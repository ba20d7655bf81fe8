"""ActivePaneTracker tests"""

import pytest

from termpanes.errors import NodeNotFound, NotATerminal
from termpanes.layout import Orientation, initialize, split
from termpanes.workspace import ActivePaneTracker


@pytest.fixture
def tree():
    root, a = initialize("bash", pane_id="a")
    root, _ = split(root, a, Orientation.VERTICAL, "bash", new_pane_id="b")
    return root


class TestActivePaneTracker:
    def test_unknown_tab(self):
        assert ActivePaneTracker().get_active("t1") is None

    def test_set_active(self, tree):
        tracker = ActivePaneTracker()
        assert tracker.set_active("t1", "b", tree) == "b"
        assert tracker.get_active("t1") == "b"
        assert tracker.tab_ids() == ["t1"]

    def test_rejects_split_id(self, tree):
        tracker = ActivePaneTracker()
        tracker.set_active("t1", "a", tree)
        with pytest.raises(NotATerminal):
            tracker.set_active("t1", tree.id, tree)
        assert tracker.get_active("t1") == "a"

    def test_rejects_unknown_pane(self, tree):
        tracker = ActivePaneTracker()
        with pytest.raises(NodeNotFound):
            tracker.set_active("t1", "zzz", tree)
        assert tracker.get_active("t1") is None

    def test_forget(self, tree):
        tracker = ActivePaneTracker()
        tracker.set_active("t1", "a", tree)
        tracker.forget("t1")
        assert tracker.get_active("t1") is None
        tracker.forget("t1")

    def test_assign_skips_validation(self):
        tracker = ActivePaneTracker()
        tracker.assign("t1", "b")
        assert tracker.get_active("t1") == "b"
        tracker.assign("t1", "a")
        assert tracker.get_active("t1") == "a"
