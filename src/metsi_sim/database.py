"""
Database layer for trajectory runs.

Provides SQLite schema and functions for storing/loading finished trees:
- Run metadata and options
- One row per tree node with stand metrics and the full state as JSON
- Error logging for stands whose run failed
"""

import json
import sqlite3
from datetime import datetime
from pathlib import Path

import pandas as pd

from .config import SimulationOptions
from .outputs import POOL_FIELDS
from .stand import StandState, stand_from_dict, stand_to_dict
from .trajectory import TrajectoryTree


# SQL Schema Definitions
SCHEMA_SIM_RUN_META = """
CREATE TABLE IF NOT EXISTS Sim_RunMeta (
    run_id           TEXT NOT NULL,
    stand_id         TEXT NOT NULL,
    horizon          INTEGER NOT NULL,
    growth_model     TEXT NOT NULL,
    created_at       TEXT NOT NULL,
    completed_at     TEXT,
    status           TEXT NOT NULL,  -- running/complete/cancelled/failed
    n_nodes          INTEGER,
    options_json     TEXT NOT NULL,  -- SimulationOptions serialized
    PRIMARY KEY (run_id, stand_id)
);
"""

SCHEMA_SIM_NODES = """
CREATE TABLE IF NOT EXISTS Sim_Nodes (
    run_id         TEXT NOT NULL,
    stand_id       TEXT NOT NULL,
    node           INTEGER NOT NULL,
    parent         INTEGER,          -- NULL for the root
    depth          INTEGER NOT NULL,
    period         INTEGER NOT NULL,
    label          TEXT NOT NULL,
    status         TEXT NOT NULL,    -- pending/expanded/complete/failed/pruned
    failure        TEXT,
    -- Stand metrics (pool values at the node)
    stems_per_ha   REAL,
    basal_area     REAL,
    mean_diameter  REAL,
    mean_height    REAL,
    age            REAL,
    state_json     TEXT NOT NULL,
    PRIMARY KEY (run_id, stand_id, node),
    FOREIGN KEY (run_id, stand_id) REFERENCES Sim_RunMeta(run_id, stand_id)
);
"""

SCHEMA_SIM_ERRORS = """
CREATE TABLE IF NOT EXISTS Sim_Errors (
    run_id      TEXT NOT NULL,
    stand_id    TEXT,
    error_type  TEXT NOT NULL,
    error_msg   TEXT NOT NULL,
    timestamp   TEXT NOT NULL
);
"""


def create_trajectory_database(db_path: Path) -> sqlite3.Connection:
    """
    Create SQLite database with the trajectory schema.

    Safe to call on existing database (uses IF NOT EXISTS).

    Args:
        db_path: Path to SQLite database file

    Returns:
        Open connection to the database

    Example:
        >>> conn = create_trajectory_database(Path("outputs/run_01/trajectories.db"))
        >>> write_run_meta(conn, "stand_1", 4, options, "reference_growth")
        >>> conn.close()
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)

    conn.execute(SCHEMA_SIM_RUN_META)
    conn.execute(SCHEMA_SIM_NODES)
    conn.execute(SCHEMA_SIM_ERRORS)

    conn.commit()
    return conn


def _options_json(options: SimulationOptions) -> str:
    # The cancellation token is runtime-only state
    return json.dumps(
        {
            "run_id": options.run_id,
            "allow_no_action": options.allow_no_action,
            "max_parallelism": options.max_parallelism,
            "max_children_per_node": options.max_children_per_node,
            "max_frontier": options.max_frontier,
            "sampling_seed": options.sampling_seed,
        },
        indent=2,
    )


def write_run_meta(
    conn: sqlite3.Connection,
    stand_id: str,
    horizon: int,
    options: SimulationOptions,
    growth_model: str,
) -> None:
    """
    Register a run for one stand with status 'running'.

    Should be called once per stand before its tree is built.

    Args:
        conn: Database connection
        stand_id: Stand identifier
        horizon: Number of simulated periods
        options: SimulationOptions of the run (run_id is the key)
        growth_model: Name of the growth model
    """
    conn.execute(
        """
        INSERT INTO Sim_RunMeta
        (run_id, stand_id, horizon, growth_model, created_at, status, options_json)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            options.run_id,
            stand_id,
            horizon,
            growth_model,
            datetime.now().isoformat(),
            "running",
            _options_json(options),
        ),
    )
    conn.commit()


def tree_to_frame(tree: TrajectoryTree) -> pd.DataFrame:
    """One row per node with metrics and the serialized state."""
    rows = []
    for index in range(len(tree)):
        node = tree.node(index)
        row = {
            "node": node.index,
            "parent": node.parent,
            "depth": node.depth,
            "period": node.state.period,
            "label": node.label,
            "status": node.status.value,
            "failure": str(node.failure) if node.failure is not None else None,
        }
        for name in POOL_FIELDS:
            row[name] = float(node.state.attribute(name))
        row["state_json"] = json.dumps(stand_to_dict(node.state))
        rows.append(row)
    return pd.DataFrame(rows)


def write_tree(
    conn: sqlite3.Connection, run_id: str, stand_id: str, tree: TrajectoryTree
) -> None:
    """
    Write every node of a finished tree.

    Also records the node count in Sim_RunMeta.

    Args:
        conn: Database connection
        run_id: Run identifier
        stand_id: Stand identifier
        tree: Trajectory tree (sealed or partial)
    """
    df = tree_to_frame(tree)
    df.insert(0, "stand_id", stand_id)
    df.insert(0, "run_id", run_id)
    # Root parent is NULL; keep the column nullable-integer
    df["parent"] = df["parent"].astype("Int64")

    df.to_sql("Sim_Nodes", conn, if_exists="append", index=False)
    conn.execute(
        "UPDATE Sim_RunMeta SET n_nodes = ? WHERE run_id = ? AND stand_id = ?",
        (len(tree), run_id, stand_id),
    )
    conn.commit()


def write_run_error(
    conn: sqlite3.Connection,
    run_id: str,
    stand_id: str | None,
    error_type: str,
    error_msg: str,
) -> None:
    """
    Log an error for a failed run.

    Args:
        conn: Database connection
        run_id: Run identifier
        stand_id: Stand that failed (None if run-level failure)
        error_type: Error type/category
        error_msg: Full error message
    """
    conn.execute(
        """
        INSERT INTO Sim_Errors (run_id, stand_id, error_type, error_msg, timestamp)
        VALUES (?, ?, ?, ?, ?)
        """,
        (run_id, stand_id, error_type, error_msg, datetime.now().isoformat()),
    )
    conn.commit()


def update_run_status(
    conn: sqlite3.Connection, run_id: str, stand_id: str, status: str
) -> None:
    """
    Update status of a stand run.

    Args:
        conn: Database connection
        run_id: Run identifier
        stand_id: Stand identifier
        status: New status ('running', 'complete', 'cancelled', 'failed')
    """
    completed_at = datetime.now().isoformat() if status != "running" else None
    conn.execute(
        """
        UPDATE Sim_RunMeta
        SET status = ?, completed_at = ?
        WHERE run_id = ? AND stand_id = ?
        """,
        (status, completed_at, run_id, stand_id),
    )
    conn.commit()


# Read functions
def load_run_meta(conn: sqlite3.Connection) -> pd.DataFrame:
    """Load run metadata."""
    return pd.read_sql_query("SELECT * FROM Sim_RunMeta", conn)


def load_nodes(conn: sqlite3.Connection) -> pd.DataFrame:
    """Load node rows for all runs."""
    return pd.read_sql_query(
        "SELECT * FROM Sim_Nodes ORDER BY run_id, stand_id, node", conn
    )


def load_errors(conn: sqlite3.Connection) -> pd.DataFrame:
    """Load error log."""
    return pd.read_sql_query("SELECT * FROM Sim_Errors", conn)


def load_node_states(
    conn: sqlite3.Connection, run_id: str, stand_id: str
) -> dict[int, StandState]:
    """Rebuild the stand state of every stored node of one run."""
    cursor = conn.execute(
        "SELECT node, state_json FROM Sim_Nodes "
        "WHERE run_id = ? AND stand_id = ? ORDER BY node",
        (run_id, stand_id),
    )
    return {node: stand_from_dict(json.loads(text)) for node, text in cursor}


def load_trajectory_results(db_path: Path) -> dict:
    """
    Load all results from a trajectory database.

    Args:
        db_path: Path to trajectories.db file

    Returns:
        Dictionary with keys:
            - 'run_meta': DataFrame with one row per (run, stand)
            - 'nodes': DataFrame with one row per tree node
            - 'errors': DataFrame with error log

    Example:
        >>> results = load_trajectory_results(Path("outputs/run_01/trajectories.db"))
        >>> nodes = results["nodes"]
        >>> nodes[nodes["status"] == "complete"].groupby("stand_id").size()
    """
    conn = sqlite3.connect(db_path)

    try:
        return {
            "run_meta": load_run_meta(conn),
            "nodes": load_nodes(conn),
            "errors": load_errors(conn),
        }
    finally:
        conn.close()
