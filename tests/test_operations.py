"""
Unit tests for operation and growth model contracts.
"""

import pytest

from metsi_sim.conditions import AttributeCondition
from metsi_sim.exceptions import GrowthModelFailure, OperationFailure, OperationRejected
from metsi_sim.operations import (
    Operation,
    OperationRegistry,
    ParameterSpec,
    apply_growth,
    apply_operation,
    bound_operation,
    chain_operations,
    model_name,
)
from metsi_sim.stand import StandState, TreeRecord


def halve(stand, params):
    return stand.with_trees(
        TreeRecord(t.species, t.stems_per_ha * params["fraction"], t.diameter, t.height, t.age)
        for t in stand.trees
    )


def grow(stand):
    return stand.advance()


@pytest.fixture
def stand():
    return StandState("S1", 1, trees=(TreeRecord("pine", 1000.0, 15.0, 12.0, 25.0),))


@pytest.fixture
def halve_op():
    return Operation(
        "halve",
        halve,
        (ParameterSpec("fraction", "float", min_value=0.0, max_value=1.0, default=0.5),),
    )


class TestParameterSpec:
    """Test ParameterSpec validation and domain checks."""

    def test_invalid_kind(self):
        with pytest.raises(ValueError, match="Invalid parameter kind"):
            ParameterSpec("x", kind="complex")

    def test_min_greater_than_max(self):
        with pytest.raises(ValueError, match="must be <= max_value"):
            ParameterSpec("x", min_value=2.0, max_value=1.0)

    def test_check(self):
        spec = ParameterSpec("x", "int", min_value=0, max_value=10, default=1)
        assert spec.check(5) is None
        assert "integer" in spec.check(2.5)
        assert ">= 0" in spec.check(-1)
        assert "number" in spec.check(True)

    def test_choices(self):
        spec = ParameterSpec("species", "str", default="pine", choices=("pine", "spruce"))
        assert spec.check("spruce") is None
        assert "one of" in spec.check("birch")

    def test_required(self):
        assert ParameterSpec("x").required
        assert not ParameterSpec("x", default=0.0).required


class TestOperation:
    """Test Operation construction and parameter resolution."""

    def test_defaults_filled(self, halve_op):
        assert halve_op.resolve_parameters(None) == {"fraction": 0.5}
        assert halve_op.resolve_parameters({"fraction": 0.2}) == {"fraction": 0.2}

    def test_unknown_parameter(self, halve_op):
        with pytest.raises(OperationRejected, match="unknown parameters"):
            halve_op.resolve_parameters({"intensity": 0.2})

    def test_missing_required(self):
        op = Operation("thin", halve, (ParameterSpec("fraction"),))
        with pytest.raises(OperationRejected, match="missing parameter 'fraction'"):
            op.resolve_parameters({})

    def test_out_of_domain(self, halve_op):
        with pytest.raises(OperationRejected, match="<= 1.0"):
            halve_op.resolve_parameters({"fraction": 1.5})

    def test_duplicate_parameter_names(self):
        with pytest.raises(ValueError, match="Duplicate parameter names"):
            Operation("x", halve, (ParameterSpec("a"), ParameterSpec("a")))

    def test_undeclared_precondition(self):
        with pytest.raises(TypeError, match="does not declare"):
            Operation("x", halve, precondition=lambda s: True)


class TestApplyOperation:
    """Test apply_operation contract enforcement."""

    def test_success_records_history(self, stand, halve_op):
        result = apply_operation(stand, halve_op, {"fraction": 0.25})
        assert result.stems_per_ha == pytest.approx(250.0)
        assert result.period == stand.period
        assert result.operation_history == ((1, "halve"),)
        assert stand.stems_per_ha == 1000.0

    def test_custom_label(self, stand, halve_op):
        result = apply_operation(stand, halve_op, label="halve_light")
        assert result.operation_history == ((1, "halve_light"),)

    def test_precondition_false_rejects(self, stand):
        op = Operation("halve", halve, precondition=AttributeCondition("age", ">", 100))
        with pytest.raises(OperationRejected, match="precondition not satisfied"):
            apply_operation(stand, op)

    def test_transform_rejection_passes_through(self, stand):
        def refuse(s, params):
            raise OperationRejected("refuse", "not today")

        with pytest.raises(OperationRejected, match="not today"):
            apply_operation(stand, Operation("refuse", refuse))

    def test_transform_exception_becomes_failure(self, stand):
        def broken(s, params):
            return 1 / 0

        with pytest.raises(OperationFailure, match="ZeroDivisionError"):
            apply_operation(stand, Operation("broken", broken))

    def test_wrong_return_type(self, stand):
        with pytest.raises(OperationFailure, match="expected StandState"):
            apply_operation(stand, Operation("bad", lambda s, p: None))

    def test_period_change_is_failure(self, stand):
        with pytest.raises(OperationFailure, match="changed period"):
            apply_operation(stand, Operation("bad", lambda s, p: s.advance()))


class TestApplyGrowth:
    """Test apply_growth contract enforcement."""

    def test_advances_one_period(self, stand):
        assert apply_growth(stand, grow).period == 2

    def test_exception_becomes_failure(self, stand):
        def overflow(s):
            raise OverflowError("math range error")

        with pytest.raises(GrowthModelFailure, match="OverflowError") as exc_info:
            apply_growth(stand, overflow)
        assert exc_info.value.model_name == "overflow"
        assert exc_info.value.period == 1

    def test_period_must_advance_by_one(self, stand):
        with pytest.raises(GrowthModelFailure, match="advance by one"):
            apply_growth(stand, lambda s: s.advance().advance())

    def test_wrong_return_type(self, stand):
        with pytest.raises(GrowthModelFailure, match="expected StandState"):
            apply_growth(stand, lambda s: 42)

    def test_model_name(self):
        assert model_name(grow) == "grow"


class TestComposition:
    """Test bound_operation and chain_operations."""

    def test_bound_operation(self, stand, halve_op):
        apply_half = bound_operation(halve_op, {"fraction": 0.5})
        assert apply_half(stand).stems_per_ha == pytest.approx(500.0)
        assert apply_half(stand) == apply_half(stand)

    def test_chain_applies_in_order(self, stand, halve_op):
        chained = chain_operations(
            "halve_twice", [(halve_op, {"fraction": 0.5}), (halve_op, {"fraction": 0.5})]
        )
        result = apply_operation(stand, chained)
        assert result.stems_per_ha == pytest.approx(250.0)
        assert [label for _, label in result.operation_history] == [
            "halve",
            "halve",
            "halve_twice",
        ]

    def test_chain_rejected_by_any_step(self, stand, halve_op):
        picky = Operation("picky", halve, precondition=AttributeCondition("age", ">", 100))
        chained = chain_operations("both", [(halve_op, None), (picky, None)])
        with pytest.raises(OperationRejected):
            apply_operation(stand, chained)

    def test_empty_chain(self):
        with pytest.raises(ValueError, match="at least one step"):
            chain_operations("nothing", [])


class TestOperationRegistry:
    """Test OperationRegistry."""

    def test_register_and_get(self, halve_op):
        registry = OperationRegistry([halve_op])
        assert registry.get("halve") is halve_op
        assert "halve" in registry
        assert len(registry) == 1

    def test_decorator(self):
        registry = OperationRegistry()

        @registry.operation("noop")
        def noop(stand, params):
            return stand

        assert registry.names() == ["noop"]
        assert registry.get("noop").transform is noop

    def test_duplicate_name(self, halve_op):
        registry = OperationRegistry([halve_op])
        with pytest.raises(ValueError, match="already registered"):
            registry.add(halve_op)

    def test_unknown_name(self):
        with pytest.raises(KeyError, match="Unknown operation 'thin'"):
            OperationRegistry().get("thin")
