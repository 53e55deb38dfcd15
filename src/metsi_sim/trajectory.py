"""
Trajectory tree: the result of a build_trajectories() run.

Nodes live in an arena addressed by integer index. Each node stores its
stand state, its parent, the label of the edge leading into it and an
ordered list of (child_index, label) pairs. The tree only grows while a
run is in progress and is sealed (read-only) once the run completes.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import NamedTuple

from .exceptions import MetsiError
from .stand import StandState

ROOT_LABEL = "initial"


class NodeStatus(Enum):
    """Lifecycle status of a tree node."""

    PENDING = "pending"  # on the frontier, not yet expanded
    EXPANDED = "expanded"  # has been expanded into children
    COMPLETE = "complete"  # leaf at the horizon
    FAILED = "failed"  # branch stopped by a recorded failure
    PRUNED = "pruned"  # dropped by frontier sampling


@dataclass
class TrajectoryNode:
    """
    One node of the trajectory tree.

    Attributes:
        index: Position in the arena
        state: Stand state at this node
        parent: Parent index (None for the root)
        label: Label of the edge from the parent ("initial" for the root)
        depth: Number of edges from the root
        status: Current NodeStatus
        failure: Recorded failure for FAILED nodes
        pre_operation: Grown stand the incoming edge operation was applied to
            (None for the root)
        children: (child_index, label) pairs in branch order
    """

    index: int
    state: StandState
    parent: int | None
    label: str
    depth: int
    status: NodeStatus = NodeStatus.PENDING
    failure: MetsiError | None = None
    pre_operation: StandState | None = None
    children: list[tuple[int, str]] = field(default_factory=list)


class Trajectory(NamedTuple):
    """One root-to-leaf path."""

    nodes: tuple[int, ...]
    labels: tuple[str, ...]  # edge labels, len(nodes) - 1
    states: tuple[StandState, ...]
    status: NodeStatus  # status of the last node


class TrajectoryTree:
    """
    Arena-backed tree of stand states.

    Args:
        root_state: Initial stand state
        horizon: Number of periods the run simulates
    """

    def __init__(self, root_state: StandState, horizon: int):
        self.horizon = horizon
        self._nodes: list[TrajectoryNode] = [
            TrajectoryNode(0, root_state, None, ROOT_LABEL, 0)
        ]
        self._sealed = False

    # ------------------------------------------------------------------
    # Construction (used by the schedule builder)
    # ------------------------------------------------------------------

    def _check_open(self) -> None:
        if self._sealed:
            raise RuntimeError("Trajectory tree is sealed and cannot be modified")

    def add_child(
        self,
        parent: int,
        state: StandState,
        label: str,
        status: NodeStatus = NodeStatus.PENDING,
        failure: MetsiError | None = None,
        pre_operation: StandState | None = None,
    ) -> int:
        """Append a child node under `parent` and return its index."""
        self._check_open()
        parent_node = self._nodes[parent]
        index = len(self._nodes)
        self._nodes.append(
            TrajectoryNode(
                index,
                state,
                parent,
                label,
                parent_node.depth + 1,
                status,
                failure,
                pre_operation,
            )
        )
        parent_node.children.append((index, label))
        return index

    def mark(
        self, index: int, status: NodeStatus, failure: MetsiError | None = None
    ) -> None:
        """Set the status (and optional failure) of a node."""
        self._check_open()
        node = self._nodes[index]
        node.status = status
        if failure is not None:
            node.failure = failure

    def seal(self) -> None:
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def root(self) -> int:
        return 0

    def __len__(self) -> int:
        return len(self._nodes)

    def node(self, index: int) -> TrajectoryNode:
        """Copy of a node; changing it does not affect the tree."""
        node = self._nodes[index]
        return replace(node, children=list(node.children))

    def state(self, index: int) -> StandState:
        return self._nodes[index].state

    def status(self, index: int) -> NodeStatus:
        return self._nodes[index].status

    def failure(self, index: int) -> MetsiError | None:
        return self._nodes[index].failure

    def parent(self, index: int) -> int | None:
        return self._nodes[index].parent

    def depth(self, index: int) -> int:
        return self._nodes[index].depth

    def children(self, index: int) -> list[tuple[int, str]]:
        """(child_index, label) pairs, in branch order."""
        return list(self._nodes[index].children)

    def edge_label(self, parent: int, child: int) -> str:
        """
        Label of the edge from `parent` to `child`.

        Raises:
            KeyError: If `child` is not a child of `parent`
        """
        for index, label in self._nodes[parent].children:
            if index == child:
                return label
        raise KeyError(f"Node {child} is not a child of node {parent}")

    def frontier(self, depth: int) -> list[int]:
        """PENDING nodes at a depth, in index order."""
        return [
            n.index
            for n in self._nodes
            if n.depth == depth and n.status is NodeStatus.PENDING
        ]

    def leaves(self) -> list[int]:
        """Nodes without children, in index order."""
        return [n.index for n in self._nodes if not n.children]

    def failed_branches(self) -> list[int]:
        """Indices of FAILED nodes."""
        return [n.index for n in self._nodes if n.status is NodeStatus.FAILED]

    def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in NodeStatus}
        for n in self._nodes:
            counts[n.status.value] += 1
        return counts

    def paths(self, include_failed: bool = True) -> Iterator[tuple[int, ...]]:
        """
        Lazily enumerate root-to-leaf index paths, depth first, in branch order.

        Each call returns a fresh generator, so enumeration can be restarted.
        PRUNED leaves are never yielded; FAILED leaves only when
        include_failed is True.
        """
        stack: list[tuple[int, ...]] = [(0,)]
        while stack:
            path = stack.pop()
            node = self._nodes[path[-1]]
            if node.children:
                # Reverse so the first child is visited first
                for child, _ in reversed(node.children):
                    stack.append(path + (child,))
                continue
            if node.status is NodeStatus.PRUNED:
                continue
            if node.status is NodeStatus.FAILED and not include_failed:
                continue
            yield path

    def trajectories(self, include_failed: bool = True) -> Iterator[Trajectory]:
        """Lazily enumerate paths as Trajectory records."""
        for path in self.paths(include_failed=include_failed):
            yield Trajectory(
                nodes=path,
                labels=tuple(self._nodes[i].label for i in path[1:]),
                states=tuple(self._nodes[i].state for i in path),
                status=self._nodes[path[-1]].status,
            )

    def operation_chains(self, include_failed: bool = False) -> list[tuple[str, ...]]:
        """Edge label sequences of every path."""
        return [
            tuple(self._nodes[i].label for i in path[1:])
            for path in self.paths(include_failed=include_failed)
        ]

    def final_states(self) -> list[StandState]:
        """Stand states at the end of every COMPLETE trajectory."""
        return [
            self._nodes[path[-1]].state
            for path in self.paths(include_failed=False)
        ]

    def __repr__(self) -> str:
        return (
            f"TrajectoryTree(nodes={len(self._nodes)}, horizon={self.horizon}, "
            f"sealed={self._sealed})"
        )
