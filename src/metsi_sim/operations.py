"""
Operation and growth model contracts.

Operations map one stand state plus parameters to a new stand state in the
same period. Growth models map one stand state to a new stand state one
period later. Both must be pure: no reads or writes outside their explicit
input, and identical inputs give identical results.
"""

import math
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from functools import partial
from typing import Any

from .conditions import condition_attributes
from .exceptions import GrowthModelFailure, OperationFailure, OperationRejected
from .stand import StandState

Transform = Callable[[StandState, Mapping[str, Any]], StandState]
GrowthModel = Callable[[StandState], StandState]

VALID_PARAMETER_KINDS = {"float", "int", "str", "bool"}


@dataclass(frozen=True)
class ParameterSpec:
    """
    Declared domain of one operation parameter.

    Attributes:
        name: Parameter name
        kind: One of "float", "int", "str", "bool"
        min_value: Minimum value (inclusive), numeric kinds only
        max_value: Maximum value (inclusive), numeric kinds only
        default: Value used when the parameter is omitted (None = required)
        choices: Allowed values, if restricted
    """

    name: str
    kind: str = "float"
    min_value: float | None = None
    max_value: float | None = None
    default: Any = None
    choices: tuple | None = None

    def __post_init__(self):
        """Validate parameter specification."""
        if self.kind not in VALID_PARAMETER_KINDS:
            raise ValueError(
                f"Invalid parameter kind '{self.kind}'. "
                f"Valid kinds: {sorted(VALID_PARAMETER_KINDS)}"
            )
        if (
            self.min_value is not None
            and self.max_value is not None
            and self.min_value > self.max_value
        ):
            raise ValueError(
                f"min_value ({self.min_value}) must be <= max_value ({self.max_value})"
            )

    @property
    def required(self) -> bool:
        return self.default is None

    def check(self, value: Any) -> str | None:
        """Return a reason string if the value is outside the domain, else None."""
        if self.kind == "bool":
            if not isinstance(value, bool):
                return f"{self.name} must be a bool, got {value!r}"
        elif self.kind == "str":
            if not isinstance(value, str):
                return f"{self.name} must be a string, got {value!r}"
        else:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return f"{self.name} must be a number, got {value!r}"
            if self.kind == "int" and not float(value).is_integer():
                return f"{self.name} must be an integer, got {value!r}"
            if not math.isfinite(value):
                return f"{self.name} must be finite, got {value!r}"
            if self.min_value is not None and value < self.min_value:
                return f"{self.name} must be >= {self.min_value}, got {value}"
            if self.max_value is not None and value > self.max_value:
                return f"{self.name} must be <= {self.max_value}, got {value}"
        if self.choices is not None and value not in self.choices:
            return f"{self.name} must be one of {list(self.choices)}, got {value!r}"
        return None


@dataclass(frozen=True)
class Operation:
    """
    A named stand transformation.

    Attributes:
        name: Operation name, also the default edge label
        transform: Function (state, params) -> state
        params_schema: Declared parameters
        precondition: Intrinsic applicability predicate (optional)
    """

    name: str
    transform: Transform
    params_schema: tuple[ParameterSpec, ...] = ()
    precondition: Callable[[StandState], bool] | None = None

    def __post_init__(self):
        if not isinstance(self.params_schema, tuple):
            object.__setattr__(self, "params_schema", tuple(self.params_schema))
        names = [spec.name for spec in self.params_schema]
        if len(names) != len(set(names)):
            duplicates = [n for n in names if names.count(n) > 1]
            raise ValueError(f"Duplicate parameter names: {set(duplicates)}")
        # Fails early for undeclared predicate functions
        condition_attributes(self.precondition)

    @property
    def parameter_names(self) -> frozenset[str]:
        return frozenset(spec.name for spec in self.params_schema)

    @property
    def attributes(self) -> frozenset[str]:
        """Stand attributes read by the intrinsic precondition."""
        return condition_attributes(self.precondition)

    def resolve_parameters(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        """
        Fill defaults and check every parameter against its domain.

        Raises:
            OperationRejected: If a parameter is unknown, missing or out of domain
        """
        params = dict(params or {})
        unknown = set(params) - self.parameter_names
        if unknown:
            raise OperationRejected(self.name, f"unknown parameters {sorted(unknown)}")

        resolved = {}
        for spec in self.params_schema:
            if spec.name in params:
                value = params[spec.name]
            elif spec.required:
                raise OperationRejected(self.name, f"missing parameter '{spec.name}'")
            else:
                value = spec.default
            reason = spec.check(value)
            if reason is not None:
                raise OperationRejected(self.name, reason)
            resolved[spec.name] = value
        return resolved


class OperationRegistry:
    """
    Mapping of operation names to Operation definitions.

    The registry is supplied to the engine by the growth-model/operation
    library; the engine itself never registers anything.

    Example:
        >>> registry = OperationRegistry()
        >>> @registry.operation("thin", params=[ParameterSpec("intensity", min_value=0, max_value=1)])
        ... def thin(stand, params):
        ...     ...
    """

    def __init__(self, operations: Sequence[Operation] = ()):
        self._operations: dict[str, Operation] = {}
        for op in operations:
            self.add(op)

    def add(self, op: Operation) -> Operation:
        if op.name in self._operations:
            raise ValueError(f"Operation '{op.name}' is already registered")
        self._operations[op.name] = op
        return op

    def register(
        self,
        name: str,
        transform: Transform,
        params: Sequence[ParameterSpec] = (),
        precondition: Callable[[StandState], bool] | None = None,
    ) -> Operation:
        """Register a transform under a name and return the Operation."""
        return self.add(Operation(name, transform, tuple(params), precondition))

    def operation(
        self,
        name: str,
        params: Sequence[ParameterSpec] = (),
        precondition: Callable[[StandState], bool] | None = None,
    ) -> Callable[[Transform], Transform]:
        """Decorator form of register()."""

        def wrap(transform: Transform) -> Transform:
            self.register(name, transform, params, precondition)
            return transform

        return wrap

    def get(self, name: str) -> Operation:
        try:
            return self._operations[name]
        except KeyError:
            raise KeyError(
                f"Unknown operation '{name}'. Registered: {sorted(self._operations)}"
            ) from None

    def names(self) -> list[str]:
        return list(self._operations)

    def __contains__(self, name: object) -> bool:
        return name in self._operations

    def __iter__(self) -> Iterator[Operation]:
        return iter(self._operations.values())

    def __len__(self) -> int:
        return len(self._operations)


def apply_operation(
    state: StandState,
    op: Operation,
    params: Mapping[str, Any] | None = None,
    label: str | None = None,
) -> StandState:
    """
    Apply an operation to a stand within the current period.

    Args:
        state: Input stand
        op: Operation to apply
        params: Parameters for the operation
        label: History label to record (defaults to op.name)

    Returns:
        New stand state with the same period and the operation appended
        to its history

    Raises:
        OperationRejected: Precondition false or parameters out of domain
        OperationFailure: Transform raised or broke the output contract
    """
    resolved = op.resolve_parameters(params)
    if op.precondition is not None:
        try:
            applicable = op.precondition(state)
        except Exception as e:
            raise OperationFailure(
                op.name, f"precondition raised {type(e).__name__}: {e}"
            ) from e
        if not applicable:
            raise OperationRejected(op.name, "precondition not satisfied")

    try:
        result = op.transform(state, resolved)
    except OperationRejected:
        raise
    except Exception as e:
        raise OperationFailure(op.name, f"{type(e).__name__}: {e}") from e

    if not isinstance(result, StandState):
        raise OperationFailure(
            op.name, f"transform returned {type(result).__name__}, expected StandState"
        )
    if result.period != state.period:
        raise OperationFailure(
            op.name, f"transform changed period from {state.period} to {result.period}"
        )
    return result.with_operation(label or op.name)


def model_name(model: GrowthModel) -> str:
    return getattr(model, "name", None) or getattr(
        model, "__name__", type(model).__name__
    )


def apply_growth(state: StandState, model: GrowthModel) -> StandState:
    """
    Advance a stand by one period with a growth model.

    Raises:
        GrowthModelFailure: If the model raises a numeric or domain error or
            does not return a state exactly one period later
    """
    name = model_name(model)
    try:
        grown = model(state)
    except GrowthModelFailure:
        raise
    except Exception as e:
        raise GrowthModelFailure(name, f"{type(e).__name__}: {e}", state.period) from e

    if not isinstance(grown, StandState):
        raise GrowthModelFailure(
            name, f"returned {type(grown).__name__}, expected StandState", state.period
        )
    if grown.period != state.period + 1:
        raise GrowthModelFailure(
            name,
            f"period must advance by one ({state.period} -> {grown.period})",
            state.period,
        )
    return grown


def bound_operation(
    op: Operation, params: Mapping[str, Any] | None = None
) -> Callable[[StandState], StandState]:
    """Return a state -> state callable with the parameters fixed."""
    return partial(apply_operation, op=op, params=dict(params or {}))


@dataclass(frozen=True)
class _ChainTransform:
    steps: tuple[tuple[Operation, tuple[tuple[str, Any], ...]], ...]

    def __call__(self, state: StandState, params: Mapping[str, Any]) -> StandState:
        for op, step_params in self.steps:
            state = apply_operation(state, op, dict(step_params))
        return state


def chain_operations(
    name: str, steps: Sequence[tuple[Operation, Mapping[str, Any] | None]]
) -> Operation:
    """
    Compose operations applied one after another into a single branch.

    Each step is applied with apply_operation, so a rejection in any step
    rejects the whole chain and every step is recorded in the history.

    Args:
        name: Name of the composed operation (used as edge label)
        steps: (operation, params) pairs in application order
    """
    if not steps:
        raise ValueError("chain_operations requires at least one step")
    frozen_steps = tuple(
        (op, tuple(sorted(dict(params or {}).items()))) for op, params in steps
    )
    return Operation(name, _ChainTransform(frozen_steps))


def chain_steps(op: Operation) -> tuple[tuple[Operation, dict[str, Any]], ...]:
    """(operation, params) steps of a chained operation; empty for plain ones."""
    if not isinstance(op.transform, _ChainTransform):
        return ()
    return tuple((step, dict(params)) for step, params in op.transform.steps)
