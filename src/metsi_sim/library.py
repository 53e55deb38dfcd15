"""
Reference operation and growth model library.

These models exist so the engine can be run end to end. They follow simple
documented formulas and are NOT calibrated growth equations:

- thinning_from_below / thinning_from_above: remove a fraction of stems
  starting from the smallest / largest diameters
- clearcut: remove every tree
- regeneration: plant one new tree record on a bare stand
- ReferenceGrowth: linear diameter/height increments scaled by fertility
  class, constant annual mortality
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .conditions import AttributeCondition
from .exceptions import GrowthModelFailure, OperationRejected
from .operations import OperationRegistry, ParameterSpec
from .stand import FertilityClass, StandState, TreeRecord

# Multiplier on increments by fertility class (1 = most fertile)
FERTILITY_FACTORS = {
    FertilityClass.VERY_RICH: 1.3,
    FertilityClass.RICH: 1.15,
    FertilityClass.DAMP: 1.0,
    FertilityClass.SUB_DRY: 0.85,
    FertilityClass.DRY: 0.7,
    FertilityClass.BARREN: 0.55,
    FertilityClass.ROCKY: 0.4,
    FertilityClass.MOUNTAIN: 0.4,
}


def _remove_stems(
    trees: tuple[TreeRecord, ...], amount: float, largest_first: bool
) -> tuple[TreeRecord, ...]:
    """Remove `amount` stems in diameter order, keeping record order."""
    order = sorted(
        range(len(trees)), key=lambda i: trees[i].diameter, reverse=largest_first
    )
    remaining = {i: trees[i].stems_per_ha for i in range(len(trees))}
    for i in order:
        if amount <= 0:
            break
        taken = min(remaining[i], amount)
        remaining[i] -= taken
        amount -= taken

    result = []
    for i, tree in enumerate(trees):
        if remaining[i] <= 0:
            continue
        if remaining[i] == tree.stems_per_ha:
            result.append(tree)
        else:
            result.append(
                TreeRecord(
                    tree.species, remaining[i], tree.diameter, tree.height, tree.age
                )
            )
    return tuple(result)


def _thin(stand: StandState, intensity: float, largest_first: bool) -> StandState:
    stems = stand.stems_per_ha
    if stems <= 0:
        raise OperationRejected("thinning", "stand has no trees")
    return stand.with_trees(_remove_stems(stand.trees, stems * intensity, largest_first))


def thinning_from_below(stand: StandState, params: Mapping[str, Any]) -> StandState:
    """Remove the given fraction of stems, smallest diameters first."""
    return _thin(stand, params["intensity"], largest_first=False)


def thinning_from_above(stand: StandState, params: Mapping[str, Any]) -> StandState:
    """Remove the given fraction of stems, largest diameters first."""
    return _thin(stand, params["intensity"], largest_first=True)


def clearcut(stand: StandState, params: Mapping[str, Any]) -> StandState:
    """Remove every tree from a stand old enough to be clearcut."""
    if stand.age < params["minimum_age"]:
        raise OperationRejected(
            "clearcut",
            f"stand age {stand.age:.1f} below minimum {params['minimum_age']}",
        )
    return stand.with_trees(())


def regeneration(stand: StandState, params: Mapping[str, Any]) -> StandState:
    """Plant one seedling record on a stand with few residual stems."""
    if stand.stems_per_ha > params["max_residual_stems"]:
        raise OperationRejected(
            "regeneration",
            f"{stand.stems_per_ha:.0f} residual stems exceed {params['max_residual_stems']}",
        )
    seedling = TreeRecord(
        species=params["species"],
        stems_per_ha=float(params["stems_per_ha"]),
        diameter=float(params["diameter"]),
        height=float(params["height"]),
        age=float(params["age"]),
    )
    return stand.with_trees(stand.trees + (seedling,))


@dataclass(frozen=True)
class ReferenceGrowth:
    """
    Linear reference growth model.

    Per year, each record gains `diameter_increment` cm of diameter and
    `height_increment` m of height (scaled by the fertility factor of the
    site), ages by one year and loses `mortality_rate` of its stems.

    Attributes:
        period_length: Years per period
        diameter_increment: Diameter growth (cm/year) on a DAMP site
        height_increment: Height growth (m/year) on a DAMP site
        mortality_rate: Annual fraction of stems lost
        max_age: Oldest tree age the model accepts
    """

    period_length: int = 5
    diameter_increment: float = 0.3
    height_increment: float = 0.25
    mortality_rate: float = 0.005
    max_age: float = 300.0
    name: str = field(default="reference_growth")

    def __post_init__(self):
        """Validate model settings."""
        if self.period_length <= 0:
            raise ValueError(f"period_length must be > 0, got {self.period_length}")
        if not 0.0 <= self.mortality_rate < 1.0:
            raise ValueError(
                f"mortality_rate must be in [0, 1), got {self.mortality_rate}"
            )

    def __call__(self, stand: StandState) -> StandState:
        factor = FERTILITY_FACTORS[stand.fertility_class]
        survival = (1.0 - self.mortality_rate) ** self.period_length
        grown = []
        for tree in stand.trees:
            age = tree.age + self.period_length
            if age > self.max_age:
                raise GrowthModelFailure(
                    self.name,
                    f"tree age {age:.0f} exceeds model domain ({self.max_age:.0f})",
                    stand.period,
                )
            grown.append(
                TreeRecord(
                    species=tree.species,
                    stems_per_ha=tree.stems_per_ha * survival,
                    diameter=tree.diameter
                    + self.diameter_increment * factor * self.period_length,
                    height=tree.height
                    + self.height_increment * factor * self.period_length,
                    age=age,
                )
            )
        return stand.advance(grown)


def default_registry() -> OperationRegistry:
    """Return a registry holding the reference operations."""
    registry = OperationRegistry()
    intensity = ParameterSpec("intensity", "float", min_value=0.0, max_value=0.95)
    registry.register(
        "thinning_from_below",
        thinning_from_below,
        [intensity],
        precondition=AttributeCondition("stems_per_ha", ">", 0),
    )
    registry.register(
        "thinning_from_above",
        thinning_from_above,
        [intensity],
        precondition=AttributeCondition("stems_per_ha", ">", 0),
    )
    registry.register(
        "clearcut",
        clearcut,
        [ParameterSpec("minimum_age", "float", min_value=0.0, default=60.0)],
    )
    registry.register(
        "regeneration",
        regeneration,
        [
            ParameterSpec("species", "str", default="pine"),
            ParameterSpec("stems_per_ha", "float", min_value=1.0, default=2000.0),
            ParameterSpec("diameter", "float", min_value=0.0, default=0.0),
            ParameterSpec("height", "float", min_value=0.0, default=0.3),
            ParameterSpec("age", "float", min_value=0.0, default=1.0),
            ParameterSpec("max_residual_stems", "float", min_value=0.0, default=100.0),
        ],
    )
    return registry
