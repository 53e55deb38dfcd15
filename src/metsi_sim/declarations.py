"""
Declaration table: which operations may branch a trajectory in which period.

The table is built and validated once, before simulation starts, and is
read-only afterwards. Entries for a period keep their declaration order;
that order is the order of child branches in the trajectory tree.
"""

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .conditions import condition_attributes, parse_condition
from .config import NO_ACTION_LABEL
from .exceptions import InvalidDeclaration
from .operations import Operation, OperationRegistry, chain_operations, chain_steps
from .stand import STAND_ATTRIBUTES


@dataclass(frozen=True)
class DeclarationEntry:
    """
    One (operation, params, precondition) triple declared for a period.

    Attributes:
        operation: Operation to apply
        params: Parameters passed to the operation
        precondition: Predicate evaluated on the grown stand (optional)
        label: Edge label in the trajectory tree (defaults to operation name)
    """

    operation: Operation
    params: Mapping[str, Any] = field(default_factory=dict)
    precondition: Callable | None = None
    label: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))
        if self.label is None and isinstance(self.operation, Operation):
            object.__setattr__(self, "label", self.operation.name)


class DeclarationTable:
    """
    Mapping from period index to an ordered tuple of DeclarationEntry.

    Args:
        horizon: Number of simulated periods
        entries: Mapping period -> sequence of DeclarationEntry
        stand_attributes: Attribute names preconditions may reference

    Raises:
        InvalidDeclaration: On the first invalid declaration found
    """

    def __init__(
        self,
        horizon: int,
        entries: Mapping[int, Sequence[DeclarationEntry]] | None = None,
        stand_attributes: frozenset[str] = STAND_ATTRIBUTES,
    ):
        if isinstance(horizon, bool) or not isinstance(horizon, int) or horizon <= 0:
            raise InvalidDeclaration(
                None, None, f"horizon must be a positive integer, got {horizon!r}"
            )
        self._horizon = horizon
        self._stand_attributes = frozenset(stand_attributes)

        table = {}
        declared = sorted((entries or {}).items(), key=lambda kv: _sort_key(kv[0]))
        for period, period_entries in declared:
            period_entries = tuple(period_entries)
            self._validate_period(period, period_entries)
            if period_entries:
                table[period] = period_entries
        self._entries = MappingProxyType(table)

    def _validate_period(self, period: Any, entries: tuple) -> None:
        if isinstance(period, bool) or not isinstance(period, int):
            raise InvalidDeclaration(period, None, "period index must be an integer")
        if not 0 <= period < self._horizon:
            first = entries[0].operation if entries else None
            raise InvalidDeclaration(
                period,
                getattr(first, "name", None),
                f"period must lie within [0, {self._horizon})",
            )

        labels = set()
        for entry in entries:
            if not isinstance(entry, DeclarationEntry):
                raise InvalidDeclaration(
                    period, None, f"expected DeclarationEntry, got {type(entry).__name__}"
                )
            op = entry.operation
            if not isinstance(op, Operation):
                raise InvalidDeclaration(
                    period, None, f"expected Operation, got {type(op).__name__}"
                )
            self._check_condition(period, op.name, entry.precondition)
            self._validate_operation(period, op, entry.params)

            if entry.label == NO_ACTION_LABEL:
                raise InvalidDeclaration(
                    period, op.name, f"label '{NO_ACTION_LABEL}' is reserved"
                )
            if entry.label in labels:
                raise InvalidDeclaration(
                    period, op.name, f"duplicate label '{entry.label}' in period"
                )
            labels.add(entry.label)

    def _check_condition(self, period: int, name: str, condition: Any) -> None:
        try:
            attributes = condition_attributes(condition)
        except TypeError as e:
            raise InvalidDeclaration(period, name, str(e)) from e
        missing = attributes - self._stand_attributes
        if missing:
            raise InvalidDeclaration(
                period,
                name,
                f"precondition references unknown stand attributes {sorted(missing)}",
            )

    def _validate_operation(
        self, period: int, op: Operation, params: Mapping[str, Any]
    ) -> None:
        # Chained operations are checked step by step
        unknown = set(params) - op.parameter_names
        if unknown:
            raise InvalidDeclaration(
                period, op.name, f"unknown parameters {sorted(unknown)}"
            )
        self._check_condition(period, op.name, op.precondition)
        for step, step_params in chain_steps(op):
            self._validate_operation(period, step, step_params)

    @property
    def horizon(self) -> int:
        return self._horizon

    def eligible_operations(self, period: int) -> tuple[DeclarationEntry, ...]:
        """Entries declared for a period, in declaration order (may be empty)."""
        return self._entries.get(period, ())

    def periods(self) -> list[int]:
        """Periods that have at least one declared entry."""
        return list(self._entries)

    def __len__(self) -> int:
        return sum(len(v) for v in self._entries.values())

    def __repr__(self) -> str:
        return (
            f"DeclarationTable(horizon={self._horizon}, periods={self.periods()}, "
            f"entries={len(self)})"
        )

    @classmethod
    def from_instructions(
        cls,
        instructions: Iterable["Instruction"],
        registry: OperationRegistry,
        horizon: int,
    ) -> "DeclarationTable":
        """
        Build a table from generator instructions.

        Instructions for the same period are appended in the order given.

        Example:
            >>> table = DeclarationTable.from_instructions(
            ...     [
            ...         Instruction([0, 2], ["thinning_from_below"],
            ...                     parameters={"thinning_from_below": {"intensity": 0.3}},
            ...                     condition="age >= 10"),
            ...         Instruction([4], ["clearcut", "regeneration"], generator="sequence"),
            ...     ],
            ...     default_registry(),
            ...     horizon=6,
            ... )
        """
        entries: dict[int, list[DeclarationEntry]] = {}
        for instruction in instructions:
            generator = GENERATORS.get(instruction.generator)
            if generator is None:
                raise InvalidDeclaration(
                    None,
                    None,
                    f"unknown generator '{instruction.generator}'. "
                    f"Valid generators: {sorted(GENERATORS)}",
                )
            stray = set(instruction.parameters) - set(instruction.operations)
            if stray:
                raise InvalidDeclaration(
                    None,
                    None,
                    f"parameters given for operations not in the instruction: {sorted(stray)}",
                )
            steps = []
            for name in instruction.operations:
                if name not in registry:
                    raise InvalidDeclaration(
                        None, name, "operation is not registered"
                    )
                steps.append((registry.get(name), instruction.parameters.get(name, {})))

            condition = instruction.condition
            if isinstance(condition, str):
                try:
                    condition = parse_condition(condition)
                except (KeyError, ValueError) as e:
                    raise InvalidDeclaration(None, None, f"bad condition: {e}") from e

            for period in instruction.periods:
                entries.setdefault(period, []).extend(generator(steps, condition))
        return cls(horizon, entries)


@dataclass(frozen=True)
class Instruction:
    """
    Declarative instruction expanded into declaration entries.

    Attributes:
        periods: Period indices the instruction applies to
        operations: Registered operation names
        generator: "alternatives" (one branch per operation) or
            "sequence" (all operations chained into one branch)
        condition: Precondition object or expression string (optional)
        parameters: Operation name -> parameters
    """

    periods: Sequence[int]
    operations: Sequence[str]
    generator: str = "alternatives"
    condition: Any = None
    parameters: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)


def alternatives(steps, condition) -> list[DeclarationEntry]:
    """One branch per operation."""
    return [DeclarationEntry(op, params, condition) for op, params in steps]


def sequence(steps, condition) -> list[DeclarationEntry]:
    """All operations chained into a single branch."""
    if not steps:
        return []
    if len(steps) == 1:
        op, params = steps[0]
        return [DeclarationEntry(op, params, condition)]
    label = ">".join(op.name for op, _ in steps)
    return [DeclarationEntry(chain_operations(label, steps), {}, condition, label)]


# Generator functions resolvable by name
GENERATORS = {
    "alternatives": alternatives,
    "sequence": sequence,
}


def _sort_key(period: Any) -> tuple:
    # Keep non-integer keys sortable so validation can report them
    if isinstance(period, int) and not isinstance(period, bool):
        return (0, period)
    return (1, repr(period))
