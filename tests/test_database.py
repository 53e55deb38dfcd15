"""
Tests for the trajectory database layer.
"""

import json

import pandas as pd
import pytest

from metsi_sim.config import SimulationOptions
from metsi_sim.database import (
    create_trajectory_database,
    load_errors,
    load_node_states,
    load_nodes,
    load_run_meta,
    load_trajectory_results,
    tree_to_frame,
    update_run_status,
    write_run_error,
    write_run_meta,
    write_tree,
)
from metsi_sim.declarations import DeclarationEntry, DeclarationTable
from metsi_sim.library import default_registry
from metsi_sim.scheduler import build_trajectories
from metsi_sim.stand import FertilityClass, SoilType, StandState, TreeRecord


@pytest.fixture
def options():
    return SimulationOptions(max_parallelism=1, run_id="test_run")


@pytest.fixture
def tree(options):
    stand = StandState(
        "S1",
        0,
        trees=(TreeRecord("pine", 1000.0, 14.0, 12.0, 25.0),),
        soil_type=SoilType.PINE_MIRE,
        fertility_class=FertilityClass.SUB_DRY,
    )
    thin = default_registry().get("thinning_from_above")
    table = DeclarationTable(2, {0: [DeclarationEntry(thin, {"intensity": 0.3})]})
    return build_trajectories(stand, table, 2, options)


@pytest.fixture
def conn(tmp_path):
    conn = create_trajectory_database(tmp_path / "nested" / "trajectories.db")
    yield conn
    conn.close()


class TestSchema:
    """Test database creation."""

    def test_creates_parent_directories(self, tmp_path):
        db_path = tmp_path / "a" / "b" / "trajectories.db"
        conn = create_trajectory_database(db_path)
        conn.close()
        assert db_path.exists()

    def test_tables_exist(self, conn):
        names = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        assert {"Sim_RunMeta", "Sim_Nodes", "Sim_Errors"} <= names

    def test_idempotent(self, tmp_path):
        db_path = tmp_path / "trajectories.db"
        create_trajectory_database(db_path).close()
        create_trajectory_database(db_path).close()


class TestWriteAndLoad:
    """Test round trips through SQLite."""

    def test_run_meta(self, conn, options):
        write_run_meta(conn, "S1", 2, options, "reference_growth")
        meta = load_run_meta(conn)
        assert len(meta) == 1
        row = meta.iloc[0]
        assert row["run_id"] == "test_run"
        assert row["status"] == "running"
        assert row["growth_model"] == "reference_growth"
        stored = json.loads(row["options_json"])
        assert stored["allow_no_action"] is True
        assert "cancellation_token" not in stored

    def test_tree_frame(self, tree):
        df = tree_to_frame(tree)
        assert len(df) == len(tree)
        assert df.loc[0, "label"] == "initial"
        assert pd.isna(df.loc[0, "parent"])

    def test_nodes(self, conn, options, tree):
        write_run_meta(conn, "S1", 2, options, "reference_growth")
        write_tree(conn, "test_run", "S1", tree)

        nodes = load_nodes(conn)
        assert len(nodes) == len(tree) == 5
        assert nodes["parent"].isna().sum() == 1
        assert list(nodes["node"]) == list(range(5))
        assert set(nodes["status"]) == {"expanded", "complete"}
        assert load_run_meta(conn).loc[0, "n_nodes"] == 5

    def test_node_states_round_trip(self, conn, options, tree):
        write_run_meta(conn, "S1", 2, options, "reference_growth")
        write_tree(conn, "test_run", "S1", tree)

        states = load_node_states(conn, "test_run", "S1")
        assert sorted(states) == list(range(len(tree)))
        for index, state in states.items():
            assert state == tree.state(index)

    def test_runs_are_keyed_by_stand(self, conn, options, tree):
        for stand_id in ("S1", "S2"):
            write_run_meta(conn, stand_id, 2, options, "reference_growth")
            write_tree(conn, "test_run", stand_id, tree)
        assert len(load_nodes(conn)) == 2 * len(tree)
        assert load_node_states(conn, "test_run", "S2")[0] == tree.state(0)


class TestStatusAndErrors:
    """Test run status updates and the error log."""

    def test_update_status(self, conn, options):
        write_run_meta(conn, "S1", 2, options, "reference_growth")
        update_run_status(conn, "test_run", "S1", "complete")
        row = load_run_meta(conn).iloc[0]
        assert row["status"] == "complete"
        assert row["completed_at"] is not None

    def test_write_error(self, conn):
        write_run_error(conn, "test_run", "S9", "InvalidStandError", "bad stand")
        write_run_error(conn, "test_run", None, "FatalError", "run aborted")
        errors = load_errors(conn)
        assert list(errors["error_type"]) == ["InvalidStandError", "FatalError"]
        assert errors["stand_id"].isna().sum() == 1

    def test_load_results(self, tmp_path, options, tree):
        db_path = tmp_path / "trajectories.db"
        conn = create_trajectory_database(db_path)
        write_run_meta(conn, "S1", 2, options, "reference_growth")
        write_tree(conn, "test_run", "S1", tree)
        conn.close()

        results = load_trajectory_results(db_path)
        assert set(results) == {"run_meta", "nodes", "errors"}
        assert len(results["nodes"]) == len(tree)
        assert results["errors"].empty
