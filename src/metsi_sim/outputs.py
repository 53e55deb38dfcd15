"""
Output extraction for trajectory trees.

Converts a finished TrajectoryTree into pandas DataFrames for analysis and
database storage.

CRITICAL: stand metrics mix pool balances and per-edge flows.
- POOL fields (e.g., basal_area): State at a node. Use value at time point.
- FLOW fields (e.g., removed_basal_area): Removed by the operation on the
  incoming edge. SUM along a trajectory for total.

See module constants below for field classification.
"""

import pandas as pd

from .config import NO_ACTION_LABEL
from .stand import StandState
from .trajectory import TrajectoryTree


# ============================================================================
# Field Semantics Constants
# ============================================================================

# POOL BALANCE fields: stand state at a node (do NOT cumsum)
POOL_FIELDS = (
    "stems_per_ha",  # Stems per hectare
    "basal_area",  # Basal area (m²/ha)
    "mean_diameter",  # Stem-weighted mean diameter (cm)
    "mean_height",  # Stem-weighted mean height (m)
    "age",  # Stem-weighted mean age (years)
)

# FLOW fields: removed by the edge operation (SUM along a trajectory)
FLOW_FIELDS = (
    "removed_stems",  # Stems removed on the incoming edge
    "removed_basal_area",  # Basal area removed on the incoming edge
)

TIME_SERIES_COLUMNS = (
    ["trajectory_id", "depth", "period", "node", "label", "status"]
    + list(POOL_FIELDS)
    + list(FLOW_FIELDS)
    + ["cumulative_removed_basal_area"]
)


# ============================================================================
# Helper Functions
# ============================================================================


def _pools(state: StandState) -> dict[str, float]:
    return {name: float(state.attribute(name)) for name in POOL_FIELDS}


def _flows(pre_operation: StandState | None, state: StandState) -> dict[str, float]:
    """Net stems and basal area removed between the grown stand and the node."""
    if pre_operation is None:
        return {"removed_stems": 0.0, "removed_basal_area": 0.0}
    # Clip at zero: regeneration adds stems, it does not remove negative ones
    return {
        "removed_stems": max(0.0, pre_operation.stems_per_ha - state.stems_per_ha),
        "removed_basal_area": max(0.0, pre_operation.basal_area - state.basal_area),
    }


def _validate_time_series(ts: pd.DataFrame) -> None:
    """
    Sanity checks on extracted time series.

    Raises:
        ValueError: If data looks incorrect

    Checks:
        - Cumulative removal is monotonically increasing per trajectory
        - Pool fields are non-negative
    """
    if "cumulative_removed_basal_area" in ts.columns and len(ts) > 1:
        diffs = ts.groupby("trajectory_id")["cumulative_removed_basal_area"].diff()
        if (diffs.dropna() < -1e-9).any():
            raise ValueError(
                "cumulative_removed_basal_area is not monotonically increasing - "
                "check that removed_basal_area is being handled as a flow field"
            )

    for col in POOL_FIELDS:
        if col in ts.columns and (ts[col] < -1e-9).any():
            raise ValueError(f"{col} contains negative values")


# ============================================================================
# Main Extraction Functions
# ============================================================================


def trajectory_time_series(
    tree: TrajectoryTree, include_failed: bool = False
) -> pd.DataFrame:
    """
    One row per (trajectory, depth) with pool and flow fields.

    Trajectories are numbered in tree.paths() order, so ids are stable for
    a given tree.

    Args:
        tree: Finished trajectory tree
        include_failed: Include trajectories ending on FAILED nodes

    Returns:
        DataFrame with columns:
            - trajectory_id: Position of the path in enumeration order
            - depth / period: Node depth and stand period (equal for valid runs)
            - node: Tree node index
            - label: Label of the incoming edge ("initial" at the root)
            - status: Node status value
            - stems_per_ha, basal_area, mean_diameter, mean_height, age (pool)
            - removed_stems, removed_basal_area (flow)
            - cumulative_removed_basal_area: Running sum along the trajectory

    Example:
        >>> ts = trajectory_time_series(tree)
        >>> ts[ts["trajectory_id"] == 0][["depth", "label", "basal_area"]]
           depth                label  basal_area
        0      0              initial       18.4
        1      1  thinning_from_below       14.9
        2      2            no_action       16.2
    """
    rows = []
    for trajectory_id, path in enumerate(tree.paths(include_failed=include_failed)):
        for index in path:
            node = tree.node(index)
            row = {
                "trajectory_id": trajectory_id,
                "depth": node.depth,
                "period": node.state.period,
                "node": index,
                "label": node.label,
                "status": node.status.value,
            }
            row.update(_pools(node.state))
            row.update(_flows(node.pre_operation, node.state))
            rows.append(row)

    if not rows:
        return pd.DataFrame(columns=TIME_SERIES_COLUMNS)

    ts = pd.DataFrame(rows)
    ts["cumulative_removed_basal_area"] = ts.groupby("trajectory_id")[
        "removed_basal_area"
    ].cumsum()
    ts = ts[TIME_SERIES_COLUMNS]

    _validate_time_series(ts)
    return ts


def trajectory_summary(
    tree: TrajectoryTree, include_failed: bool = False
) -> pd.DataFrame:
    """
    One row per trajectory with final pools and flow totals.

    CRITICAL: Handles pools and flows differently:
    - Pools (basal_area, stems_per_ha, ...): value at the last node
    - Flows (removed_*): summed over every edge of the trajectory

    Args:
        tree: Finished trajectory tree
        include_failed: Include trajectories ending on FAILED nodes

    Returns:
        DataFrame with columns trajectory_id, operations (edge labels joined
        by ","), n_operations (edges other than no-action), status,
        final_<pool> for each pool field and total_<flow> for each flow field
    """
    columns = (
        ["trajectory_id", "operations", "n_operations", "status"]
        + [f"final_{name}" for name in POOL_FIELDS]
        + [f"total_{name}" for name in FLOW_FIELDS]
    )
    ts = trajectory_time_series(tree, include_failed=include_failed)
    if len(ts) == 0:
        return pd.DataFrame(columns=columns)

    edges = ts[ts["depth"] > 0]
    grouped = ts.groupby("trajectory_id", sort=True)
    last = grouped.tail(1).set_index("trajectory_id")

    summary = pd.DataFrame(index=last.index)
    summary["operations"] = edges.groupby("trajectory_id")["label"].agg(",".join)
    summary["operations"] = summary["operations"].fillna("")
    summary["n_operations"] = (
        edges[edges["label"] != NO_ACTION_LABEL].groupby("trajectory_id").size()
    )
    summary["n_operations"] = summary["n_operations"].fillna(0).astype(int)
    summary["status"] = last["status"]
    for name in POOL_FIELDS:
        summary[f"final_{name}"] = last[name]
    for name in FLOW_FIELDS:
        summary[f"total_{name}"] = grouped[name].sum()

    return summary.reset_index()[columns]

