"""
Unit tests for the trajectory tree container.
"""

import pytest

from metsi_sim.exceptions import GrowthModelFailure
from metsi_sim.stand import StandState
from metsi_sim.trajectory import ROOT_LABEL, NodeStatus, TrajectoryTree


@pytest.fixture
def tree():
    """
    Hand-built horizon-2 tree:

        0 ─ thin ─ 1 ─ no_action ─ 3 (complete)
          └ no_action ─ 2 ─ no_action ─ 4 (complete)
                          └ thin ─ 5 (pruned)
    """
    root = StandState("S1", 0)
    tree = TrajectoryTree(root, horizon=2)
    a = tree.add_child(0, root.advance().with_operation("thin"), "thin")
    b = tree.add_child(0, root.advance(), "no_action")
    tree.mark(0, NodeStatus.EXPANDED)
    tree.add_child(a, tree.state(a).advance(), "no_action", NodeStatus.COMPLETE)
    tree.add_child(b, tree.state(b).advance(), "no_action", NodeStatus.COMPLETE)
    tree.add_child(b, tree.state(b).advance().with_operation("thin"), "thin", NodeStatus.PRUNED)
    tree.mark(a, NodeStatus.EXPANDED)
    tree.mark(b, NodeStatus.EXPANDED)
    return tree


class TestConstruction:
    """Test node creation and sealing."""

    def test_root(self):
        tree = TrajectoryTree(StandState("S1", 0), horizon=3)
        assert len(tree) == 1
        assert tree.root == 0
        assert tree.node(0).label == ROOT_LABEL
        assert tree.parent(0) is None
        assert tree.status(0) is NodeStatus.PENDING

    def test_children_keep_insertion_order(self, tree):
        assert tree.children(0) == [(1, "thin"), (2, "no_action")]
        assert tree.depth(5) == 2
        assert tree.parent(5) == 2

    def test_children_returns_copy(self, tree):
        tree.children(0).clear()
        assert len(tree.children(0)) == 2

    def test_seal_blocks_changes(self, tree):
        tree.seal()
        assert tree.sealed
        with pytest.raises(RuntimeError, match="sealed"):
            tree.add_child(0, StandState("S1", 1), "late")
        with pytest.raises(RuntimeError, match="sealed"):
            tree.mark(1, NodeStatus.FAILED)

    def test_sealed_node_copy_detached(self, tree):
        tree.seal()
        node = tree.node(2)
        node.status = NodeStatus.FAILED
        node.children.append((99, "late"))
        node.label = "renamed"

        assert tree.status(2) is NodeStatus.EXPANDED
        assert tree.children(2) == [(4, "no_action"), (5, "thin")]
        assert tree.node(2).label == "no_action"
        assert tree.leaves() == [3, 4, 5]

    def test_mark_failure(self):
        tree = TrajectoryTree(StandState("S1", 0), horizon=1)
        failure = GrowthModelFailure("model", "bad input", 0)
        tree.mark(0, NodeStatus.FAILED, failure)
        assert tree.failure(0) is failure
        assert tree.failed_branches() == [0]


class TestQueries:
    """Test read-only queries."""

    def test_edge_label(self, tree):
        assert tree.edge_label(0, 1) == "thin"
        with pytest.raises(KeyError, match="not a child"):
            tree.edge_label(1, 2)

    def test_frontier_only_pending(self, tree):
        assert tree.frontier(2) == []
        fresh = TrajectoryTree(StandState("S1", 0), horizon=1)
        assert fresh.frontier(0) == [0]

    def test_leaves(self, tree):
        assert tree.leaves() == [3, 4, 5]

    def test_count_by_status(self, tree):
        counts = tree.count_by_status()
        assert counts["expanded"] == 3
        assert counts["complete"] == 2
        assert counts["pruned"] == 1
        assert counts["failed"] == 0


class TestPaths:
    """Test lazy path enumeration."""

    def test_paths_skip_pruned(self, tree):
        assert list(tree.paths()) == [(0, 1, 3), (0, 2, 4)]

    def test_paths_restartable(self, tree):
        assert list(tree.paths()) == list(tree.paths())

    def test_paths_lazy(self, tree):
        paths = tree.paths()
        assert next(paths) == (0, 1, 3)

    def test_failed_leaves_optional(self):
        tree = TrajectoryTree(StandState("S1", 0), horizon=2)
        a = tree.add_child(0, StandState("S1", 1), "thin")
        tree.add_child(0, StandState("S1", 1), "no_action")
        tree.mark(a, NodeStatus.FAILED, GrowthModelFailure("m", "x"))
        assert list(tree.paths()) == [(0, 1), (0, 2)]
        assert list(tree.paths(include_failed=False)) == [(0, 2)]

    def test_trajectories(self, tree):
        first = next(tree.trajectories())
        assert first.nodes == (0, 1, 3)
        assert first.labels == ("thin", "no_action")
        assert [s.period for s in first.states] == [0, 1, 2]
        assert first.status is NodeStatus.COMPLETE

    def test_operation_chains_and_final_states(self, tree):
        assert tree.operation_chains() == [("thin", "no_action"), ("no_action", "no_action")]
        assert [s.operation_history for s in tree.final_states()] == [((1, "thin"),), ()]
