"""
Unit tests for the stand state model.
"""

import math

import pytest

from metsi_sim.exceptions import InvalidStandError
from metsi_sim.stand import (
    STAND_ATTRIBUTES,
    FertilityClass,
    SoilType,
    StandState,
    TreeRecord,
    stand_from_dict,
    stand_to_dict,
    validate_stand,
)


@pytest.fixture
def stand():
    """Two-record pine stand."""
    return StandState(
        identifier="S1",
        period=0,
        trees=(
            TreeRecord("pine", 600.0, 10.0, 8.0, 20.0),
            TreeRecord("pine", 400.0, 20.0, 15.0, 30.0),
        ),
        soil_type=SoilType.MINERAL,
        fertility_class=FertilityClass.DAMP,
    )


class TestTreeRecord:
    """Test TreeRecord validation."""

    def test_basal_area(self):
        tree = TreeRecord("spruce", 100.0, 20.0, 18.0, 40.0)
        assert tree.basal_area == pytest.approx(100 * math.pi * 0.1**2)

    def test_negative_value_raises(self):
        with pytest.raises(ValueError, match="diameter must be finite and >= 0"):
            TreeRecord("pine", 100.0, -1.0, 10.0, 20.0)

    def test_nan_raises(self):
        with pytest.raises(ValueError, match="height"):
            TreeRecord("pine", 100.0, 10.0, float("nan"), 20.0)

    def test_non_numeric_raises(self):
        with pytest.raises(ValueError, match="stems_per_ha must be a number"):
            TreeRecord("pine", "100", 10.0, 10.0, 20.0)

    def test_empty_species_raises(self):
        with pytest.raises(ValueError, match="species"):
            TreeRecord("", 100.0, 10.0, 10.0, 20.0)


class TestStandState:
    """Test derived attributes and transitions."""

    def test_derived_attributes(self, stand):
        assert stand.stems_per_ha == 1000.0
        assert stand.n_records == 2
        assert stand.mean_diameter == pytest.approx((600 * 10 + 400 * 20) / 1000)
        assert stand.mean_height == pytest.approx((600 * 8 + 400 * 15) / 1000)
        assert stand.age == pytest.approx(24.0)
        expected_ba = sum(t.basal_area for t in stand.trees)
        assert stand.basal_area == pytest.approx(expected_ba)

    def test_empty_stand_means_are_zero(self):
        bare = StandState("bare", 3)
        assert bare.stems_per_ha == 0
        assert bare.mean_diameter == 0.0
        assert bare.age == 0.0

    def test_lists_are_stored_as_tuples(self):
        state = StandState(
            "S", 0, [TreeRecord("pine", 1.0, 1.0, 1.0, 1.0)], operation_history=[[0, "x"]]
        )
        assert isinstance(state.trees, tuple)
        assert state.operation_history == ((0, "x"),)

    def test_attribute_lookup(self, stand):
        assert stand.attribute("stems_per_ha") == 1000.0
        assert stand.attribute("soil_type") is SoilType.MINERAL
        with pytest.raises(KeyError, match="volume"):
            stand.attribute("volume")

    def test_every_schema_attribute_resolves(self, stand):
        for name in STAND_ATTRIBUTES:
            stand.attribute(name)

    def test_advance_does_not_mutate(self, stand):
        later = stand.advance()
        assert later.period == 1
        assert stand.period == 0
        assert later.trees == stand.trees

    def test_with_trees(self, stand):
        thinned = stand.with_trees(stand.trees[:1])
        assert thinned.n_records == 1
        assert thinned.period == stand.period
        assert stand.n_records == 2

    def test_with_operation_records_history(self, stand):
        later = stand.advance().with_operation("thin")
        assert later.operation_history == ((1, "thin"),)
        assert later.last_operation_period("thin") == 1
        assert later.last_operation_period("clearcut") is None
        assert stand.operation_history == ()

    def test_frozen(self, stand):
        with pytest.raises(AttributeError):
            stand.period = 5


class TestValidateStand:
    """Test validate_stand."""

    def test_valid_stand_passes(self, stand):
        assert validate_stand(stand) is stand

    def test_not_a_stand(self):
        with pytest.raises(InvalidStandError, match="expected StandState"):
            validate_stand({"identifier": "S1"})

    def test_empty_identifier(self):
        with pytest.raises(InvalidStandError, match="identifier"):
            validate_stand(StandState("", 0))

    def test_negative_period(self):
        with pytest.raises(InvalidStandError, match="period must be >= 0"):
            validate_stand(StandState("S1", -1))

    def test_bad_fertility_class(self):
        with pytest.raises(InvalidStandError, match="fertility class"):
            validate_stand(StandState("S1", 0, fertility_class=3))

    def test_bad_tree_entry(self):
        with pytest.raises(InvalidStandError, match="expected TreeRecord"):
            validate_stand(StandState("S1", 0, trees=("pine",)))

    def test_error_carries_context(self):
        with pytest.raises(InvalidStandError) as exc_info:
            validate_stand(StandState("S9", -2))
        assert exc_info.value.identifier == "S9"
        assert exc_info.value.component == "stand"


class TestStandDict:
    """Test dict conversion used by the SQLite export."""

    def test_round_trip(self, stand):
        state = stand.advance().with_operation("thin")
        assert stand_from_dict(stand_to_dict(state)) == state

    def test_dict_is_plain_data(self, stand):
        data = stand_to_dict(stand)
        assert data["soil_type"] == "MINERAL"
        assert data["fertility_class"] == 3
        assert len(data["trees"]) == 2
