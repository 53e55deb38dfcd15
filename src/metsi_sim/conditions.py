"""
Precondition predicates over stand states.

A precondition is any callable ``state -> bool`` that also exposes an
``attributes`` frozenset naming the stand attributes it reads. The
declaration table checks those names against STAND_ATTRIBUTES when it is
built, so conditions are validated before any simulation starts.
"""

import operator
from dataclasses import dataclass
from typing import Any, Callable

from .stand import FertilityClass, SoilType, StandState

COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}


@dataclass(frozen=True)
class AttributeCondition:
    """
    Compare one stand attribute against a threshold.

    Example:
        >>> old_enough = AttributeCondition("age", ">=", 10)
        >>> old_enough(stand)
        True
    """

    attribute: str
    comparator: str
    threshold: Any

    def __post_init__(self):
        if self.comparator not in COMPARATORS:
            raise ValueError(
                f"Invalid comparator '{self.comparator}'. "
                f"Valid comparators: {sorted(COMPARATORS)}"
            )

    @property
    def attributes(self) -> frozenset[str]:
        return frozenset({self.attribute})

    def __call__(self, state: StandState) -> bool:
        value = getattr(state, self.attribute)
        return bool(COMPARATORS[self.comparator](value, self.threshold))


@dataclass(frozen=True)
class AllOf:
    """True when every member condition holds (and when there are none)."""

    conditions: tuple = ()

    @property
    def attributes(self) -> frozenset[str]:
        return frozenset().union(*(condition_attributes(c) for c in self.conditions))

    def __call__(self, state: StandState) -> bool:
        return all(c(state) for c in self.conditions)


@dataclass(frozen=True)
class AnyOf:
    """True when at least one member condition holds."""

    conditions: tuple = ()

    @property
    def attributes(self) -> frozenset[str]:
        return frozenset().union(*(condition_attributes(c) for c in self.conditions))

    def __call__(self, state: StandState) -> bool:
        return any(c(state) for c in self.conditions)


@dataclass(frozen=True)
class Not:
    """Negation of a condition."""

    condition: Any

    @property
    def attributes(self) -> frozenset[str]:
        return condition_attributes(self.condition)

    def __call__(self, state: StandState) -> bool:
        return not self.condition(state)


@dataclass(frozen=True)
class MinimumTimeInterval:
    """
    Require a minimum number of periods since an operation was last applied.

    Holds when the operation has never been applied on this trajectory.

    Attributes:
        periods: Minimum number of periods between applications
        operation: Edge label of the operation to look for
    """

    periods: int
    operation: str

    def __post_init__(self):
        if self.periods < 0:
            raise ValueError(f"periods must be >= 0, got {self.periods}")

    @property
    def attributes(self) -> frozenset[str]:
        return frozenset({"period", "operation_history"})

    def __call__(self, state: StandState) -> bool:
        last = state.last_operation_period(self.operation)
        if last is None:
            return True
        return state.period - last >= self.periods


@dataclass(frozen=True)
class FunctionCondition:
    """A plain function wrapped with the attributes it declares to read."""

    function: Callable[[StandState], bool]
    attributes: frozenset[str]

    def __call__(self, state: StandState) -> bool:
        return bool(self.function(state))


ALWAYS = AllOf(())


def requires(*attributes: str) -> Callable[[Callable], FunctionCondition]:
    """
    Decorator declaring which stand attributes a predicate function reads.

    Example:
        >>> @requires("basal_area", "age")
        ... def dense_and_old(stand):
        ...     return stand.basal_area > 25 and stand.age > 40
    """

    def wrap(function: Callable[[StandState], bool]) -> FunctionCondition:
        return FunctionCondition(function, frozenset(attributes))

    return wrap


def condition_attributes(condition: Any) -> frozenset[str]:
    """
    Return the attribute names a condition reads.

    Raises:
        TypeError: If the condition is not callable or declares no attributes
    """
    if condition is None:
        return frozenset()
    if not callable(condition):
        raise TypeError(f"Condition must be callable, got {type(condition).__name__}")
    attributes = getattr(condition, "attributes", None)
    if attributes is None:
        raise TypeError(
            f"Condition {condition!r} does not declare the attributes it reads; "
            "wrap it with requires(...)"
        )
    return frozenset(attributes)


def _parse_value(text: str) -> Any:
    text = text.strip()
    if text in ("None", "none", "null"):
        return None
    if text in ("True", "true"):
        return True
    if text in ("False", "false"):
        return False
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return text.strip("'\"")


def parse_condition(expression: str):
    """
    Parse a simple textual condition.

    Supports ``<attribute> <comparator> <value>`` clauses joined by ``and``
    or ``or`` (``and`` binds tighter). Comparisons against soil type or
    fertility class use the enum member names or numbers.

    Example:
        >>> cond = parse_condition("age >= 10 and basal_area > 20")
        >>> sorted(cond.attributes)
        ['age', 'basal_area']
    """
    expression = expression.strip()
    if not expression:
        raise ValueError("Empty condition expression")

    alternatives = []
    for disjunct in expression.split(" or "):
        clauses = []
        for clause in disjunct.split(" and "):
            parts = clause.split()
            if len(parts) != 3:
                raise ValueError(f"Cannot parse condition clause: '{clause.strip()}'")
            attribute, comparator, raw = parts
            clauses.append(_build_clause(attribute, comparator, _parse_value(raw)))
        alternatives.append(clauses[0] if len(clauses) == 1 else AllOf(tuple(clauses)))

    if len(alternatives) == 1:
        return alternatives[0]
    return AnyOf(tuple(alternatives))


def _build_clause(attribute: str, comparator: str, value: Any) -> AttributeCondition:
    if attribute == "soil_type" and value is not None:
        value = SoilType[value] if isinstance(value, str) else SoilType(value)
    elif attribute == "fertility_class" and value is not None:
        value = FertilityClass[value] if isinstance(value, str) else FertilityClass(value)
    return AttributeCondition(attribute, comparator, value)
