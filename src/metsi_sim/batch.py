"""
Batch simulation orchestration.

Build trajectory trees for multiple stands and aggregate results.
"""

from pathlib import Path

import pandas as pd

from .config import SimulationOptions
from .database import (
    create_trajectory_database,
    update_run_status,
    write_run_error,
    write_run_meta,
    write_tree,
)
from .declarations import DeclarationTable
from .exceptions import SimulationCancelled
from .library import ReferenceGrowth
from .logging_config import get_logger
from .operations import GrowthModel, model_name
from .outputs import trajectory_summary, trajectory_time_series
from .scheduler import build_trajectories
from .stand import StandState

logger = get_logger(__name__)


def run_single_stand(
    state: StandState,
    table: DeclarationTable,
    options: SimulationOptions,
    growth_model: GrowthModel,
) -> dict:
    """
    Build the trajectory tree for a single stand.

    Args:
        state: Initial stand state
        table: Declaration table shared by the batch
        options: Run options
        growth_model: Growth model

    Returns:
        Dictionary with:
            - stand_id: Stand identifier
            - success: Boolean indicating a complete tree
            - cancelled: Boolean, True if the run was cancelled
            - tree: TrajectoryTree (partial tree when cancelled, else None on error)
            - error_type / error: Exception class name and message on failure
    """
    stand_id = getattr(state, "identifier", None)
    try:
        tree = build_trajectories(state, table, table.horizon, options, growth_model)
        return {
            "stand_id": stand_id,
            "success": True,
            "cancelled": False,
            "tree": tree,
        }
    except SimulationCancelled as e:
        return {
            "stand_id": stand_id,
            "success": False,
            "cancelled": True,
            "tree": e.tree,
            "error_type": type(e).__name__,
            "error": str(e),
        }
    except Exception as e:
        logger.exception("Stand %s failed", stand_id)
        return {
            "stand_id": stand_id,
            "success": False,
            "cancelled": False,
            "tree": None,
            "error_type": type(e).__name__,
            "error": str(e),
        }


def _concat_tagged(frames: dict[str, pd.DataFrame]) -> pd.DataFrame | None:
    tagged = []
    for stand_id, df in frames.items():
        df = df.copy()
        df.insert(0, "stand_id", stand_id)
        tagged.append(df)
    if not tagged:
        return None
    return pd.concat(tagged, ignore_index=True)


def run_stands(
    stands: list[StandState],
    table: DeclarationTable,
    options: SimulationOptions | None = None,
    growth_model: GrowthModel | None = None,
    db_path: Path | None = None,
) -> dict:
    """
    Build trajectory trees for multiple stands and aggregate results.

    Stands run one after another; each run parallelizes internally over its
    frontier. A failing stand is recorded in run_status and the batch moves
    on. A cancelled run stops the batch.

    Args:
        stands: Initial stand states
        table: Declaration table shared by all stands
        options: Run options (defaults to SimulationOptions())
        growth_model: Growth model (defaults to ReferenceGrowth())
        db_path: Optional SQLite file receiving every tree and error

    Returns:
        Dictionary with aggregated results:
            - run_id: Identifier of this batch (options.run_id)
            - trees: Dict stand_id -> TrajectoryTree
            - summary_all: Per-trajectory summaries for all stands
            - time_series_all: Per-node time series for all stands
            - run_status: Status of each stand run
            - db_path: Path to the results database (if written)

    Example:
        >>> results = run_stands(states, table)
        Alternatives for stand 1: 4
        ...
        >>> results["run_status"]["success"].all()
        True
    """
    if options is None:
        options = SimulationOptions()
    if growth_model is None:
        growth_model = ReferenceGrowth()

    run_id = options.run_id
    conn = create_trajectory_database(Path(db_path)) if db_path is not None else None

    trees = {}
    summaries = {}
    time_series = {}
    status_rows = []

    print(f"\nRunning {len(stands)} stands, horizon {table.horizon}")
    print(f"Run ID: {run_id}")
    print(f"Growth model: {model_name(growth_model)}")
    print()

    try:
        for idx, state in enumerate(stands):
            stand_id = getattr(state, "identifier", f"#{idx}")
            if conn is not None:
                write_run_meta(
                    conn, stand_id, table.horizon, options, model_name(growth_model)
                )

            result = run_single_stand(state, table, options, growth_model)
            tree = result["tree"]

            n_trajectories = 0
            n_failed = 0
            if tree is not None:
                trees[stand_id] = tree
                summaries[stand_id] = trajectory_summary(tree)
                time_series[stand_id] = trajectory_time_series(tree)
                n_trajectories = len(summaries[stand_id])
                n_failed = len(tree.failed_branches())

            if result["success"]:
                print(f"Alternatives for stand {stand_id}: {n_trajectories}", flush=True)
            else:
                print(
                    f"[{idx + 1}/{len(stands)}] {stand_id}: ✗ - {result['error']}",
                    flush=True,
                )

            status_rows.append(
                {
                    "stand_id": stand_id,
                    "success": result["success"],
                    "cancelled": result["cancelled"],
                    "n_trajectories": n_trajectories,
                    "n_failed_branches": n_failed,
                    "error_type": result.get("error_type"),
                    "error": result.get("error"),
                }
            )

            if conn is not None:
                if tree is not None:
                    write_tree(conn, run_id, stand_id, tree)
                if not result["success"]:
                    write_run_error(
                        conn, run_id, stand_id, result["error_type"], result["error"]
                    )
                if result["success"]:
                    status = "complete"
                elif result["cancelled"]:
                    status = "cancelled"
                else:
                    status = "failed"
                update_run_status(conn, run_id, stand_id, status)

            if result["cancelled"]:
                logger.info("Batch %s cancelled at stand %s", run_id, stand_id)
                break
    finally:
        if conn is not None:
            conn.close()

    aggregated = {
        "run_id": run_id,
        "trees": trees,
        "summary_all": _concat_tagged(summaries),
        "time_series_all": _concat_tagged(time_series),
        "run_status": pd.DataFrame(
            status_rows,
            columns=[
                "stand_id",
                "success",
                "cancelled",
                "n_trajectories",
                "n_failed_branches",
                "error_type",
                "error",
            ],
        ),
    }
    if db_path is not None:
        aggregated["db_path"] = Path(db_path)

    print_batch_report(aggregated)
    return aggregated


def collect_batch_errors(results: dict) -> pd.DataFrame:
    """
    Collect every recorded failure from a batch.

    Includes stand-level failures (from run_status) and branch failures
    recorded on tree nodes. Returns an empty DataFrame when nothing failed.

    Args:
        results: Dictionary returned by run_stands()

    Returns:
        DataFrame with columns: stand_id, node, depth, error_type, message
        (node and depth are None for stand-level failures)

    Example:
        >>> errors = collect_batch_errors(results)
        >>> if errors.empty:
        ...     print("No errors - all runs successful!")
    """
    columns = ["stand_id", "node", "depth", "error_type", "message"]
    rows = []

    status = results.get("run_status")
    if status is not None:
        for _, row in status[~status["success"]].iterrows():
            rows.append(
                {
                    "stand_id": row["stand_id"],
                    "node": None,
                    "depth": None,
                    "error_type": row["error_type"],
                    "message": row["error"],
                }
            )

    for stand_id, tree in results.get("trees", {}).items():
        for index in tree.failed_branches():
            failure = tree.failure(index)
            rows.append(
                {
                    "stand_id": stand_id,
                    "node": index,
                    "depth": tree.depth(index),
                    "error_type": type(failure).__name__ if failure else None,
                    "message": str(failure) if failure else None,
                }
            )

    return pd.DataFrame(rows, columns=columns)


def print_batch_report(results: dict) -> None:
    """
    Print a human-readable batch summary.

    Args:
        results: Dictionary returned by run_stands()
    """
    status = results["run_status"]
    successful = int(status["success"].sum()) if len(status) else 0

    print()
    print("=" * 60)
    print(f"Run ID: {results['run_id']}")
    print(f"Completed: {successful}/{len(status)} stands successful")
    if len(status):
        print(f"Trajectories: {int(status['n_trajectories'].sum())}")
        print(f"Failed branches: {int(status['n_failed_branches'].sum())}")
    if "db_path" in results:
        print(f"Database: {results['db_path']}")
    print("=" * 60)


def write_batch_results(results: dict, output_dir: Path | str) -> dict[str, Path]:
    """
    Write batch tables to CSV files.

    Args:
        results: Dictionary returned by run_stands()
        output_dir: Directory for the CSV files (created if missing)

    Returns:
        Dict mapping table name to written file path
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    written = {}
    for name in ("summary_all", "time_series_all", "run_status"):
        df = results.get(name)
        if df is None:
            continue
        path = output_dir / f"{name}.csv"
        df.to_csv(path, index=False)
        written[name] = path

    errors = collect_batch_errors(results)
    if not errors.empty:
        path = output_dir / "errors.csv"
        errors.to_csv(path, index=False)
        written["errors"] = path

    return written
