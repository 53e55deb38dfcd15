"""
Unit tests for the reference operation and growth model library.
"""

import pytest

from metsi_sim.exceptions import GrowthModelFailure, OperationRejected
from metsi_sim.library import FERTILITY_FACTORS, ReferenceGrowth, default_registry
from metsi_sim.operations import apply_operation
from metsi_sim.stand import FertilityClass, StandState, TreeRecord


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def stand():
    """Small and large diameter classes, 1000 stems total."""
    return StandState(
        "S1",
        1,
        trees=(
            TreeRecord("pine", 600.0, 10.0, 8.0, 20.0),
            TreeRecord("spruce", 400.0, 20.0, 15.0, 20.0),
        ),
    )


class TestThinning:
    """Test thinning from below / above."""

    def test_from_below_removes_small_stems_first(self, registry, stand):
        op = registry.get("thinning_from_below")
        result = apply_operation(stand, op, {"intensity": 0.5})
        assert result.stems_per_ha == pytest.approx(500.0)
        assert [(t.species, t.stems_per_ha) for t in result.trees] == [
            ("pine", 100.0),
            ("spruce", 400.0),
        ]

    def test_from_above_removes_large_stems_first(self, registry, stand):
        op = registry.get("thinning_from_above")
        result = apply_operation(stand, op, {"intensity": 0.5})
        assert [(t.species, t.stems_per_ha) for t in result.trees] == [("pine", 500.0)]

    def test_intensity_domain(self, registry, stand):
        op = registry.get("thinning_from_below")
        with pytest.raises(OperationRejected, match="intensity"):
            apply_operation(stand, op, {"intensity": 0.99})

    def test_empty_stand_rejected(self, registry):
        op = registry.get("thinning_from_below")
        with pytest.raises(OperationRejected):
            apply_operation(StandState("bare", 0), op, {"intensity": 0.3})

    def test_input_unchanged(self, registry, stand):
        apply_operation(stand, registry.get("thinning_from_above"), {"intensity": 0.5})
        assert stand.stems_per_ha == 1000.0


class TestClearcutAndRegeneration:
    """Test clearcut and regeneration."""

    def test_clearcut_too_young(self, registry, stand):
        with pytest.raises(OperationRejected, match="below minimum"):
            apply_operation(stand, registry.get("clearcut"))

    def test_clearcut(self, registry, stand):
        result = apply_operation(stand, registry.get("clearcut"), {"minimum_age": 10.0})
        assert result.trees == ()
        assert result.operation_history == ((1, "clearcut"),)

    def test_regeneration_needs_open_stand(self, registry, stand):
        with pytest.raises(OperationRejected, match="residual stems"):
            apply_operation(stand, registry.get("regeneration"))

    def test_regeneration_plants_seedlings(self, registry):
        result = apply_operation(
            StandState("bare", 2), registry.get("regeneration"), {"species": "spruce"}
        )
        assert result.n_records == 1
        seedling = result.trees[0]
        assert seedling.species == "spruce"
        assert seedling.stems_per_ha == 2000.0
        assert seedling.height == pytest.approx(0.3)


class TestReferenceGrowth:
    """Test the linear reference growth model."""

    def test_one_period(self):
        stand = StandState("S1", 0, trees=(TreeRecord("pine", 1000.0, 10.0, 8.0, 20.0),))
        grown = ReferenceGrowth()(stand)
        tree = grown.trees[0]
        assert grown.period == 1
        assert tree.diameter == pytest.approx(11.5)
        assert tree.height == pytest.approx(9.25)
        assert tree.age == pytest.approx(25.0)
        assert tree.stems_per_ha == pytest.approx(1000.0 * 0.995**5)

    def test_fertility_scaling(self):
        stand = StandState(
            "S1",
            0,
            trees=(TreeRecord("pine", 1000.0, 10.0, 8.0, 20.0),),
            fertility_class=FertilityClass.VERY_RICH,
        )
        grown = ReferenceGrowth()(stand)
        factor = FERTILITY_FACTORS[FertilityClass.VERY_RICH]
        assert grown.trees[0].diameter == pytest.approx(10.0 + 0.3 * factor * 5)

    def test_bare_stand_still_advances(self):
        assert ReferenceGrowth()(StandState("bare", 4)).period == 5

    def test_outside_age_domain(self):
        stand = StandState("S1", 2, trees=(TreeRecord("pine", 10.0, 40.0, 30.0, 298.0),))
        with pytest.raises(GrowthModelFailure, match="exceeds model domain") as exc_info:
            ReferenceGrowth()(stand)
        assert exc_info.value.period == 2

    def test_invalid_settings(self):
        with pytest.raises(ValueError, match="period_length must be > 0"):
            ReferenceGrowth(period_length=0)
        with pytest.raises(ValueError, match="mortality_rate"):
            ReferenceGrowth(mortality_rate=1.0)

    def test_deterministic(self):
        stand = StandState("S1", 0, trees=(TreeRecord("pine", 1000.0, 10.0, 8.0, 20.0),))
        model = ReferenceGrowth()
        assert model(stand) == model(stand)
