"""
Exceptions for the stand scenario engine.

Branch-local outcomes (OperationRejected, OperationFailure,
GrowthModelFailure, BranchExhausted) are recorded on trajectory tree nodes.
InvalidDeclaration and FatalError subclasses abort a run before or at a
period boundary and reach the caller.
"""

from typing import Any


class MetsiError(Exception):
    """Base exception for all engine errors."""

    pass


class InvalidDeclaration(MetsiError):
    """Raised when a declaration table cannot be constructed."""

    def __init__(self, period: int | None, operation: str | None, reason: str):
        self.period = period
        self.operation = operation
        self.reason = reason
        super().__init__(
            f"Invalid declaration (period={period}, operation={operation}): {reason}"
        )


class OperationRejected(MetsiError):
    """Raised when an operation does not apply to a stand.

    Rejection is an expected outcome: the branch is pruned, nothing else.
    """

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Operation '{operation}' rejected: {reason}")


class OperationFailure(MetsiError):
    """Raised when an operation transform breaks its contract."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Operation '{operation}' failed: {reason}")


class GrowthModelFailure(MetsiError):
    """Raised when a growth model cannot advance a stand."""

    def __init__(self, model_name: str, reason: str, period: int | None = None):
        self.model_name = model_name
        self.reason = reason
        self.period = period
        super().__init__(f"Growth model '{model_name}' failed: {reason}")


class BranchExhausted(MetsiError):
    """Raised when no branch survives and the no-action branch is disabled."""

    def __init__(self, period: int):
        self.period = period
        super().__init__(
            f"No operation applied at period {period} and no-action branch is disabled"
        )


class FatalError(MetsiError):
    """Raised when a run cannot start or must stop.

    Attributes:
        component: Engine component that detected the problem
        context: Extra details about the offending input
    """

    def __init__(self, component: str, message: str, **context: Any):
        self.component = component
        self.context = context
        detail = ", ".join(f"{k}={v!r}" for k, v in context.items())
        text = f"[{component}] {message}"
        if detail:
            text += f" ({detail})"
        super().__init__(text)


class InvalidStandError(FatalError):
    """Raised when an initial stand state is malformed."""

    def __init__(self, identifier: str | None, reason: str):
        self.identifier = identifier
        self.reason = reason
        super().__init__("stand", f"Invalid stand state: {reason}", identifier=identifier)


class SimulationCancelled(FatalError):
    """Raised when cancellation is observed at a period boundary.

    Attributes:
        completed_periods: Number of periods committed before cancelling
        tree: The partially built tree (None if no period completed)
    """

    def __init__(self, completed_periods: int, tree=None):
        self.completed_periods = completed_periods
        self.tree = tree
        super().__init__(
            "scheduler",
            "Simulation cancelled",
            completed_periods=completed_periods,
        )
