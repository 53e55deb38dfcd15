"""
Data loading utilities for stand and tree CSV files.

Stand file: one row per stand (STAND_ID, SOIL_TYPE, FERTILITY_CLASS).
Tree file: one row per tree record (STAND_ID, SPECIES, STEMS_PER_HA,
DIAMETER, HEIGHT, AGE).
"""

from pathlib import Path

import pandas as pd

from .exceptions import InvalidStandError
from .stand import FertilityClass, SoilType, StandState, TreeRecord, validate_stand

STAND_REQUIRED_COLUMNS = ["STAND_ID", "SOIL_TYPE", "FERTILITY_CLASS"]
TREE_REQUIRED_COLUMNS = [
    "STAND_ID",
    "SPECIES",
    "STEMS_PER_HA",
    "DIAMETER",
    "HEIGHT",
    "AGE",
]


def _read_csv(filepath: Path | str, required_cols: list[str], kind: str) -> pd.DataFrame:
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"{kind} data file not found: {filepath}")

    df = pd.read_csv(filepath, dtype={"STAND_ID": str})

    missing = [col for col in required_cols if col not in df.columns]
    if missing:
        raise ValueError(f"{kind} data missing required columns: {missing}")

    return df


def load_stands(filepath: Path | str) -> pd.DataFrame:
    """
    Load stand attributes from CSV.

    Args:
        filepath: Path to stand CSV file

    Returns:
        DataFrame with stand-level attributes
    """
    return _read_csv(filepath, STAND_REQUIRED_COLUMNS, "Stand")


def load_trees(filepath: Path | str) -> pd.DataFrame:
    """
    Load tree records from CSV.

    Args:
        filepath: Path to tree CSV file

    Returns:
        DataFrame with one row per tree record
    """
    return _read_csv(filepath, TREE_REQUIRED_COLUMNS, "Tree")


def _soil_type(value) -> SoilType:
    if isinstance(value, str) and not value.strip().isdigit():
        return SoilType[value.strip().upper()]
    return SoilType(int(value))


def stand_from_frames(
    stand: pd.Series, trees: pd.DataFrame, period: int = 0
) -> StandState:
    """
    Build a StandState from one stand row and its tree rows.

    Args:
        stand: Row of the stand DataFrame
        trees: Tree rows belonging to that stand (any order; kept as given)
        period: Period index of the state (default 0)

    Returns:
        Validated StandState

    Raises:
        InvalidStandError: If a site code or tree value is invalid
    """
    stand_id = str(stand["STAND_ID"])
    try:
        soil_type = _soil_type(stand["SOIL_TYPE"])
        fertility_class = FertilityClass(int(stand["FERTILITY_CLASS"]))
        records = tuple(
            TreeRecord(
                species=str(row["SPECIES"]),
                stems_per_ha=float(row["STEMS_PER_HA"]),
                diameter=float(row["DIAMETER"]),
                height=float(row["HEIGHT"]),
                age=float(row["AGE"]),
            )
            for _, row in trees.iterrows()
        )
    except (KeyError, ValueError, TypeError) as e:
        raise InvalidStandError(stand_id, str(e)) from e

    state = StandState(
        identifier=stand_id,
        period=period,
        trees=records,
        soil_type=soil_type,
        fertility_class=fertility_class,
    )
    validate_stand(state)
    return state


def build_stand_states(stands: pd.DataFrame, trees: pd.DataFrame) -> list[StandState]:
    """
    Build one StandState per stand row, in stand file order.

    Raises:
        InvalidStandError: For the first stand that cannot be built
    """
    grouped = {stand_id: group for stand_id, group in trees.groupby("STAND_ID")}
    empty = trees.iloc[0:0]
    return [
        stand_from_frames(stand, grouped.get(str(stand["STAND_ID"]), empty))
        for _, stand in stands.iterrows()
    ]


def validate_stands(
    stands: pd.DataFrame,
    trees: pd.DataFrame,
    min_trees: int = 1,
) -> tuple[pd.DataFrame, pd.DataFrame, dict]:
    """
    Validate stand/tree data and exclude invalid stands.

    Checks each stand has at least `min_trees` tree records and that a
    StandState can be built from its rows. Stands failing either check are
    excluded with a reason in the report.

    Args:
        stands: Stand DataFrame
        trees: Tree DataFrame
        min_trees: Minimum number of tree records per stand (default 1)

    Returns:
        Tuple of (valid_stands, valid_trees, validation_report)

        validation_report contains:
            - total_stands: Original number of stands
            - valid_stands: Number of valid stands
            - excluded_stands: List of dicts with stand_id, tree_count, reason
            - tree_counts: Dict mapping stand_id to tree record count

    Example:
        >>> valid_stands, valid_trees, report = validate_stands(stands, trees)
        >>> print(f"Valid: {report['valid_stands']}/{report['total_stands']}")
        Valid: 11/12
    """
    tree_counts = trees.groupby("STAND_ID").size().to_dict()

    excluded = []
    valid_stand_ids = []

    for _, stand in stands.iterrows():
        stand_id = str(stand["STAND_ID"])
        count = tree_counts.get(stand_id, 0)

        if count < min_trees:
            excluded.append(
                {
                    "stand_id": stand_id,
                    "tree_count": count,
                    "reason": f"insufficient trees ({count} < {min_trees})",
                }
            )
            continue

        try:
            stand_from_frames(stand, trees[trees["STAND_ID"] == stand_id])
        except InvalidStandError as e:
            excluded.append(
                {"stand_id": stand_id, "tree_count": count, "reason": e.reason}
            )
            continue
        valid_stand_ids.append(stand_id)

    valid_stands = stands[stands["STAND_ID"].isin(valid_stand_ids)].copy()
    valid_trees = trees[trees["STAND_ID"].isin(valid_stand_ids)].copy()

    report = {
        "total_stands": len(stands),
        "valid_stands": len(valid_stands),
        "excluded_stands": excluded,
        "tree_counts": tree_counts,
    }

    return valid_stands, valid_trees, report


def print_validation_report(report: dict) -> None:
    """
    Print a human-readable validation report.

    Args:
        report: Validation report from validate_stands()
    """
    total = report["total_stands"]
    valid = report["valid_stands"]
    excluded = report["excluded_stands"]

    print("\nStand Validation Report:")
    print(f"  Total stands:    {total}")
    print(f"  Valid stands:    {valid}")
    print(f"  Excluded stands: {len(excluded)}")

    if excluded:
        print("\n  Excluded stands:")
        for exc in excluded:
            print(f"    {exc['stand_id']} ({exc['tree_count']} records): {exc['reason']}")
