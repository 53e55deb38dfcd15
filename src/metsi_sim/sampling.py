"""
Sampling and pruning helpers for large trajectory trees.

Full enumeration grows multiplicatively with horizon and operation count.
These helpers bound that growth while keeping results reproducible: every
random choice comes from a seeded random.Random and is applied to inputs in
a deterministic order.
"""

import random
from collections.abc import Sequence

from .trajectory import Trajectory, TrajectoryTree


def sample_frontier(
    frontier: Sequence[int], limit: int | None, rng: random.Random
) -> tuple[list[int], list[int]]:
    """
    Choose at most `limit` frontier nodes at random.

    Args:
        frontier: Node indices in frontier order
        limit: Maximum number of nodes to keep (None = keep all)
        rng: Seeded random number generator

    Returns:
        Tuple of (kept, dropped) node index lists, both in frontier order
    """
    if limit is None or len(frontier) <= limit:
        return list(frontier), []
    chosen = set(rng.sample(range(len(frontier)), limit))
    kept = [node for i, node in enumerate(frontier) if i in chosen]
    dropped = [node for i, node in enumerate(frontier) if i not in chosen]
    return kept, dropped


def sample_paths(
    tree: TrajectoryTree, n_samples: int, seed: int, include_failed: bool = False
) -> list[Trajectory]:
    """
    Draw trajectories from a tree by Monte-Carlo descent.

    Each sample starts at the root and picks one child uniformly at random
    at every level until it reaches a leaf. Pruned leaves (and failed ones
    unless include_failed is set) are excluded up front, so every draw ends
    on an eligible leaf. Samples are drawn with replacement.

    Args:
        tree: Finished trajectory tree
        n_samples: Number of trajectories to draw
        seed: Random seed
        include_failed: Allow draws ending on FAILED leaves

    Returns:
        List of Trajectory records (may repeat)

    Example:
        >>> picks = sample_paths(tree, n_samples=10, seed=42)
        >>> len(picks)
        10
    """
    if n_samples <= 0:
        raise ValueError(f"n_samples must be > 0, got {n_samples}")

    # Subtrees holding at least one eligible leaf
    eligible: set[int] = set()
    for path in tree.paths(include_failed=include_failed):
        eligible.update(path)
    if not eligible:
        return []

    rng = random.Random(seed)
    samples = []
    for _ in range(n_samples):
        path = [tree.root]
        while True:
            options = [c for c, _ in tree.children(path[-1]) if c in eligible]
            if not options:
                break
            path.append(rng.choice(options))
        samples.append(
            Trajectory(
                nodes=tuple(path),
                labels=tuple(tree.node(i).label for i in path[1:]),
                states=tuple(tree.state(i) for i in path),
                status=tree.status(path[-1]),
            )
        )
    return samples
