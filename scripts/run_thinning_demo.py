#!/usr/bin/env python3
"""
Thinning and clearcut scenario demo.

Builds a trajectory tree for each stand with:
- Thinning from below or above in periods 0-3 (stands denser than 600 stems/ha)
- At most one thinning every 2 periods
- Clearcut followed by regeneration in period 4 (stands at least 40 years old)

Input: data/stands.csv and data/trees.csv if present, otherwise three
built-in example stands.

Output: outputs/thinning_demo/trajectories.db plus CSV tables
"""

import sys
import time
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import metsi_sim as ms
from metsi_sim import (
    DeclarationTable,
    Instruction,
    MinimumTimeInterval,
    SimulationOptions,
    StandState,
    TreeRecord,
)

# Configuration
HORIZON = 5
N_WORKERS = 4
MAX_FRONTIER = 500
OUTPUT_DIR = Path(__file__).parent.parent / "outputs" / "thinning_demo"

# Input data
DATA_DIR = Path(__file__).parent.parent / "data"
STAND_FILE = DATA_DIR / "stands.csv"
TREE_FILE = DATA_DIR / "trees.csv"


def example_stands() -> list[StandState]:
    """Three stands of increasing age."""
    return [
        StandState(
            "young_pine",
            0,
            trees=(TreeRecord("pine", 2200.0, 8.0, 7.0, 18.0),),
            fertility_class=ms.FertilityClass.SUB_DRY,
        ),
        StandState(
            "mixed",
            0,
            trees=(
                TreeRecord("pine", 700.0, 14.0, 12.0, 30.0),
                TreeRecord("spruce", 500.0, 11.0, 10.0, 28.0),
                TreeRecord("birch", 200.0, 9.0, 11.0, 25.0),
            ),
        ),
        StandState(
            "mature_spruce",
            0,
            trees=(TreeRecord("spruce", 650.0, 24.0, 20.0, 45.0),),
            soil_type=ms.SoilType.SPRUCE_MIRE,
            fertility_class=ms.FertilityClass.RICH,
        ),
    ]


def load_input_stands() -> list[StandState]:
    if not (STAND_FILE.exists() and TREE_FILE.exists()):
        print("No input files found, using built-in example stands")
        return example_stands()

    stands = ms.load_stands(STAND_FILE)
    trees = ms.load_trees(TREE_FILE)
    stands, trees, report = ms.validate_stands(stands, trees)
    if report["excluded_stands"]:
        ms.print_validation_report(report)
    return ms.build_stand_states(stands, trees)


def main():
    """Run the demo batch."""
    print("=" * 70)
    print("Stand Scenario Branching Demo")
    print("=" * 70)
    print(f"Horizon:      {HORIZON} periods")
    print(f"Workers:      {N_WORKERS}")
    print(f"Max frontier: {MAX_FRONTIER}")
    print(f"Output:       {OUTPUT_DIR}")
    print("=" * 70)

    ms.configure_logging("WARNING")
    registry = ms.default_registry()

    table = DeclarationTable.from_instructions(
        [
            Instruction(
                periods=[0, 1, 2, 3],
                operations=["thinning_from_below", "thinning_from_above"],
                condition=ms.AllOf(
                    (
                        ms.parse_condition("stems_per_ha > 600"),
                        MinimumTimeInterval(2, "thinning_from_below"),
                        MinimumTimeInterval(2, "thinning_from_above"),
                    )
                ),
                parameters={
                    "thinning_from_below": {"intensity": 0.3},
                    "thinning_from_above": {"intensity": 0.2},
                },
            ),
            Instruction(
                periods=[4],
                operations=["clearcut", "regeneration"],
                generator="sequence",
                parameters={
                    "clearcut": {"minimum_age": 40.0},
                    "regeneration": {"species": "spruce"},
                },
            ),
        ],
        registry,
        horizon=HORIZON,
    )

    options = SimulationOptions(
        max_parallelism=N_WORKERS,
        max_frontier=MAX_FRONTIER,
        sampling_seed=42,
    )

    start_time = time.time()
    results = ms.run_stands(
        load_input_stands(),
        table,
        options,
        db_path=OUTPUT_DIR / "trajectories.db",
    )
    elapsed = time.time() - start_time

    written = ms.write_batch_results(results, OUTPUT_DIR)

    summary = results["summary_all"]
    if summary is not None and len(summary) > 0:
        print("\nTrajectories per stand:")
        print(summary.groupby("stand_id").size().to_string())

        best = summary.loc[
            summary.groupby("stand_id")["total_removed_basal_area"].idxmax()
        ]
        print("\nLargest total removal per stand:")
        print(
            best[["stand_id", "operations", "total_removed_basal_area"]].to_string(
                index=False
            )
        )

    errors = ms.collect_batch_errors(results)
    if not errors.empty:
        print(f"\n{len(errors)} recorded failures (see {written['errors']})")

    print("=" * 70)
    print(f"Batch complete in {elapsed:.1f} seconds")
    print(f"Results: {results['db_path']}")
    print("=" * 70)


if __name__ == "__main__":
    main()
