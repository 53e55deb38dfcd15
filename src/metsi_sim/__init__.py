"""
metsi-sim - Forest stand scenario branching engine.

This package provides utilities for:
- Describing stands as immutable states (tree records, site attributes)
- Declaring which management operations may branch a trajectory per period
- Growing every alternative forward and collecting the trajectory tree
- Extracting time series and summaries as DataFrames
- Batch processing multiple stands and storing trees in SQLite
"""

from .batch import (
    collect_batch_errors,
    print_batch_report,
    run_single_stand,
    run_stands,
    write_batch_results,
)
from .conditions import (
    ALWAYS,
    AllOf,
    AnyOf,
    AttributeCondition,
    MinimumTimeInterval,
    Not,
    parse_condition,
    requires,
)
from .config import NO_ACTION_LABEL, CancellationToken, SimulationOptions
from .data_loader import (
    build_stand_states,
    load_stands,
    load_trees,
    print_validation_report,
    stand_from_frames,
    validate_stands,
)
from .database import create_trajectory_database, load_trajectory_results
from .declarations import DeclarationEntry, DeclarationTable, Instruction
from .exceptions import (
    BranchExhausted,
    FatalError,
    GrowthModelFailure,
    InvalidDeclaration,
    InvalidStandError,
    MetsiError,
    OperationFailure,
    OperationRejected,
    SimulationCancelled,
)
from .library import ReferenceGrowth, default_registry
from .logging_config import configure_logging
from .operations import (
    Operation,
    OperationRegistry,
    ParameterSpec,
    apply_growth,
    apply_operation,
    bound_operation,
    chain_operations,
)
from .outputs import trajectory_summary, trajectory_time_series
from .sampling import sample_paths
from .scheduler import BuilderState, ScheduleBuilder, build_trajectories
from .stand import FertilityClass, SoilType, StandState, TreeRecord
from .trajectory import NodeStatus, Trajectory, TrajectoryTree

__all__ = [
    "StandState",
    "TreeRecord",
    "SoilType",
    "FertilityClass",
    "AttributeCondition",
    "AllOf",
    "AnyOf",
    "Not",
    "ALWAYS",
    "MinimumTimeInterval",
    "requires",
    "parse_condition",
    "ParameterSpec",
    "Operation",
    "OperationRegistry",
    "apply_operation",
    "apply_growth",
    "bound_operation",
    "chain_operations",
    "ReferenceGrowth",
    "default_registry",
    "DeclarationEntry",
    "DeclarationTable",
    "Instruction",
    "SimulationOptions",
    "CancellationToken",
    "NO_ACTION_LABEL",
    "TrajectoryTree",
    "Trajectory",
    "NodeStatus",
    "BuilderState",
    "ScheduleBuilder",
    "build_trajectories",
    "sample_paths",
    "trajectory_time_series",
    "trajectory_summary",
    "create_trajectory_database",
    "load_trajectory_results",
    "load_stands",
    "load_trees",
    "stand_from_frames",
    "build_stand_states",
    "validate_stands",
    "print_validation_report",
    "run_single_stand",
    "run_stands",
    "collect_batch_errors",
    "print_batch_report",
    "write_batch_results",
    "configure_logging",
    "MetsiError",
    "InvalidDeclaration",
    "OperationRejected",
    "OperationFailure",
    "GrowthModelFailure",
    "BranchExhausted",
    "FatalError",
    "InvalidStandError",
    "SimulationCancelled",
]
