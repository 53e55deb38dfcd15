"""
Stand state model.

A StandState is a frozen snapshot of a forest stand at one simulated
instant: tree records, site attributes and the period index. Every
transition returns a new value; nothing here mutates in place.
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Any

from .exceptions import InvalidStandError


class SoilType(Enum):
    """Soil and peatland category of the stand."""

    MINERAL = 1
    SPRUCE_MIRE = 2
    PINE_MIRE = 3
    OPEN_PEATLAND = 4


class FertilityClass(IntEnum):
    """Site fertility class, 1 = most fertile."""

    VERY_RICH = 1
    RICH = 2
    DAMP = 3
    SUB_DRY = 4
    DRY = 5
    BARREN = 6
    ROCKY = 7
    MOUNTAIN = 8


# Attribute names that preconditions may reference
STAND_ATTRIBUTES = frozenset(
    {
        "identifier",
        "period",
        "soil_type",
        "fertility_class",
        "operation_history",
        "stems_per_ha",
        "basal_area",
        "mean_diameter",
        "mean_height",
        "age",
        "n_records",
    }
)


@dataclass(frozen=True)
class TreeRecord:
    """
    One tree stratum or reference tree.

    Attributes:
        species: Species tag (e.g. "pine", "spruce")
        stems_per_ha: Number of stems this record represents per hectare
        diameter: Breast height diameter (cm)
        height: Tree height (m)
        age: Biological age (years)
    """

    species: str
    stems_per_ha: float
    diameter: float
    height: float
    age: float

    def __post_init__(self):
        """Validate record values."""
        if not isinstance(self.species, str) or not self.species:
            raise ValueError(f"species must be a non-empty string, got {self.species!r}")
        for name in ("stems_per_ha", "diameter", "height", "age"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a number, got {value!r}")
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"{name} must be finite and >= 0, got {value}")

    @property
    def basal_area(self) -> float:
        """Basal area represented by this record (m²/ha)."""
        return self.stems_per_ha * math.pi * (self.diameter / 200.0) ** 2


@dataclass(frozen=True)
class StandState:
    """
    Snapshot of a forest stand at one period.

    Attributes:
        identifier: Stand identifier
        period: Period index (non-negative)
        trees: Tree records
        soil_type: Soil category
        fertility_class: Site fertility class
        operation_history: (period, label) of every operation applied so far
    """

    identifier: str
    period: int
    trees: tuple[TreeRecord, ...] = ()
    soil_type: SoilType = SoilType.MINERAL
    fertility_class: FertilityClass = FertilityClass.DAMP
    operation_history: tuple[tuple[int, str], ...] = field(default=())

    def __post_init__(self):
        # Accept lists from callers but store tuples
        if not isinstance(self.trees, tuple):
            object.__setattr__(self, "trees", tuple(self.trees))
        if not isinstance(self.operation_history, tuple):
            object.__setattr__(
                self,
                "operation_history",
                tuple(tuple(item) for item in self.operation_history),
            )

    # ------------------------------------------------------------------
    # Derived attributes
    # ------------------------------------------------------------------

    @property
    def stems_per_ha(self) -> float:
        return sum(t.stems_per_ha for t in self.trees)

    @property
    def basal_area(self) -> float:
        return sum(t.basal_area for t in self.trees)

    @property
    def n_records(self) -> int:
        return len(self.trees)

    def _weighted_mean(self, attr: str) -> float:
        stems = self.stems_per_ha
        if stems <= 0:
            return 0.0
        return sum(t.stems_per_ha * getattr(t, attr) for t in self.trees) / stems

    @property
    def mean_diameter(self) -> float:
        return self._weighted_mean("diameter")

    @property
    def mean_height(self) -> float:
        return self._weighted_mean("height")

    @property
    def age(self) -> float:
        return self._weighted_mean("age")

    def attribute(self, name: str) -> Any:
        """
        Resolve a stand attribute by name.

        Raises:
            KeyError: If the name is not part of STAND_ATTRIBUTES
        """
        if name not in STAND_ATTRIBUTES:
            raise KeyError(f"Unknown stand attribute: {name}")
        return getattr(self, name)

    def last_operation_period(self, label: str) -> int | None:
        """Period of the most recent operation with the given label."""
        for period, applied in reversed(self.operation_history):
            if applied == label:
                return period
        return None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def with_trees(self, trees) -> "StandState":
        """Return a copy holding the given tree records."""
        return replace(self, trees=tuple(trees))

    def advance(self, trees=None) -> "StandState":
        """Return a copy one period later, optionally with new tree records."""
        if trees is None:
            trees = self.trees
        return replace(self, period=self.period + 1, trees=tuple(trees))

    def with_operation(self, label: str) -> "StandState":
        """Return a copy with an operation appended to the history."""
        return replace(
            self, operation_history=self.operation_history + ((self.period, label),)
        )


def validate_stand(state: Any) -> StandState:
    """
    Check that a value is a well-formed StandState.

    Args:
        state: Candidate initial state

    Returns:
        The same state

    Raises:
        InvalidStandError: If any invariant does not hold
    """
    if not isinstance(state, StandState):
        raise InvalidStandError(None, f"expected StandState, got {type(state).__name__}")

    identifier = state.identifier
    if not isinstance(identifier, str) or not identifier:
        raise InvalidStandError(None, "identifier must be a non-empty string")
    if isinstance(state.period, bool) or not isinstance(state.period, int):
        raise InvalidStandError(identifier, f"period must be an integer, got {state.period!r}")
    if state.period < 0:
        raise InvalidStandError(identifier, f"period must be >= 0, got {state.period}")
    if not isinstance(state.soil_type, SoilType):
        raise InvalidStandError(identifier, f"unknown soil type {state.soil_type!r}")
    if not isinstance(state.fertility_class, FertilityClass):
        raise InvalidStandError(
            identifier, f"unknown fertility class {state.fertility_class!r}"
        )
    for i, tree in enumerate(state.trees):
        if not isinstance(tree, TreeRecord):
            raise InvalidStandError(
                identifier, f"tree {i} is {type(tree).__name__}, expected TreeRecord"
            )
    for entry in state.operation_history:
        if len(entry) != 2 or not isinstance(entry[1], str):
            raise InvalidStandError(identifier, f"malformed history entry {entry!r}")
    return state


def stand_to_dict(state: StandState) -> dict:
    """Convert a stand state to a JSON-serializable dict."""
    return {
        "identifier": state.identifier,
        "period": state.period,
        "soil_type": state.soil_type.name,
        "fertility_class": int(state.fertility_class),
        "operation_history": [list(item) for item in state.operation_history],
        "trees": [
            {
                "species": t.species,
                "stems_per_ha": t.stems_per_ha,
                "diameter": t.diameter,
                "height": t.height,
                "age": t.age,
            }
            for t in state.trees
        ],
    }


def stand_from_dict(data: dict) -> StandState:
    """Rebuild a stand state from stand_to_dict() output."""
    return StandState(
        identifier=data["identifier"],
        period=int(data["period"]),
        trees=tuple(TreeRecord(**tree) for tree in data.get("trees", [])),
        soil_type=SoilType[data.get("soil_type", "MINERAL")],
        fertility_class=FertilityClass(int(data.get("fertility_class", 3))),
        operation_history=tuple(
            (int(period), str(label)) for period, label in data.get("operation_history", [])
        ),
    )
