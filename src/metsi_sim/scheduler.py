"""
Schedule builder: period-by-period expansion of the trajectory tree.

For every PENDING node on the current frontier the builder grows the stand
by one period, applies each eligible declared operation in declaration
order, and appends one child per successful operation plus the no-action
child. Nodes of one period are independent, so they may be expanded on a
thread pool; results are committed in frontier order, which keeps the tree
identical for any degree of parallelism.

States: IDLE -> EXPANDING -> COMPLETE (or CANCELLED when a cancellation
request is observed at a period boundary).
"""

import random
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum

from .config import NO_ACTION_LABEL, SimulationOptions
from .declarations import DeclarationEntry, DeclarationTable
from .exceptions import (
    BranchExhausted,
    FatalError,
    GrowthModelFailure,
    MetsiError,
    OperationFailure,
    OperationRejected,
    SimulationCancelled,
)
from .library import ReferenceGrowth
from .logging_config import get_logger, log_period_summary
from .operations import GrowthModel, apply_growth, apply_operation, model_name
from .sampling import sample_frontier
from .stand import StandState, validate_stand
from .trajectory import NodeStatus, TrajectoryTree

logger = get_logger(__name__)


class BuilderState(Enum):
    IDLE = "idle"
    EXPANDING = "expanding"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


@dataclass
class ChildResult:
    """A computed child edge (failure set for operations that broke)."""

    label: str
    state: StandState
    failure: MetsiError | None = None


@dataclass
class NodeExpansion:
    """Everything computed for one frontier node during one period."""

    index: int
    grown: StandState | None = None
    children: list[ChildResult] = field(default_factory=list)
    failure: MetsiError | None = None
    rejected: list[str] = field(default_factory=list)


def expand_node(
    index: int,
    state: StandState,
    period: int,
    entries: tuple[DeclarationEntry, ...],
    growth_model: GrowthModel,
    allow_no_action: bool = True,
    max_children: int | None = None,
) -> NodeExpansion:
    """
    Expand one node for one period.

    Pure with respect to the tree: reads only its arguments and returns the
    computed children, so it can run on any worker.

    Args:
        index: Tree index of the node (carried through to the result)
        state: Stand state at the node
        period: Period being expanded
        entries: Eligible declaration entries, in declaration order
        growth_model: Growth model applied before any operation
        allow_no_action: Append the no-action child
        max_children: Maximum number of successful operation children

    Returns:
        NodeExpansion with children in declaration order, no-action last
    """
    result = NodeExpansion(index)
    try:
        grown = apply_growth(state, growth_model)
    except GrowthModelFailure as e:
        result.failure = e
        return result
    result.grown = grown

    succeeded = 0
    for entry in entries:
        if max_children is not None and succeeded >= max_children:
            break
        label = entry.label
        try:
            if entry.precondition is not None and not entry.precondition(grown):
                result.rejected.append(label)
                continue
        except Exception as e:
            result.children.append(
                ChildResult(
                    label,
                    grown,
                    OperationFailure(label, f"precondition raised {type(e).__name__}: {e}"),
                )
            )
            continue

        try:
            child = apply_operation(grown, entry.operation, entry.params, label=label)
        except OperationRejected:
            result.rejected.append(label)
            continue
        except OperationFailure as e:
            result.children.append(ChildResult(label, grown, e))
            continue
        result.children.append(ChildResult(label, child))
        succeeded += 1

    if allow_no_action:
        result.children.append(ChildResult(NO_ACTION_LABEL, grown))
    elif succeeded == 0:
        result.failure = BranchExhausted(period)
    return result


class ScheduleBuilder:
    """
    Drives a trajectory tree from IDLE to COMPLETE one period at a time.

    Args:
        initial_state: Root stand state
        declaration_table: Validated declaration table
        horizon: Number of periods to simulate
        options: Run options (defaults to SimulationOptions())
        growth_model: Growth model (defaults to ReferenceGrowth())

    Raises:
        FatalError: If the inputs cannot describe a valid run
    """

    def __init__(
        self,
        initial_state: StandState,
        declaration_table: DeclarationTable,
        horizon: int,
        options: SimulationOptions | None = None,
        growth_model: GrowthModel | None = None,
    ):
        if options is None:
            options = SimulationOptions()
        if growth_model is None:
            growth_model = ReferenceGrowth()

        if not isinstance(declaration_table, DeclarationTable):
            raise FatalError(
                "scheduler",
                "declaration_table must be a DeclarationTable",
                got=type(declaration_table).__name__,
            )
        if isinstance(horizon, bool) or not isinstance(horizon, int) or horizon <= 0:
            raise FatalError("scheduler", "horizon must be a positive integer", horizon=horizon)
        if declaration_table.horizon != horizon:
            raise FatalError(
                "scheduler",
                "declaration table was built for a different horizon",
                table_horizon=declaration_table.horizon,
                horizon=horizon,
            )
        if not isinstance(options, SimulationOptions):
            raise FatalError(
                "scheduler", "options must be SimulationOptions", got=type(options).__name__
            )
        if not callable(growth_model):
            raise FatalError("scheduler", "growth_model must be callable", got=growth_model)

        self.initial_state = initial_state
        self.table = declaration_table
        self.horizon = horizon
        self.options = options
        self.growth_model = growth_model

        self.tree: TrajectoryTree | None = None
        self._state = BuilderState.IDLE
        self._period = 0
        self._rng = random.Random(options.sampling_seed)

    @property
    def state(self) -> BuilderState:
        return self._state

    @property
    def period(self) -> int:
        """Next period to expand (equals horizon once complete)."""
        return self._period

    def _start(self) -> None:
        validate_stand(self.initial_state)
        self.tree = TrajectoryTree(self.initial_state, self.horizon)
        self._state = BuilderState.EXPANDING
        logger.info(
            "Run %s: stand %s, horizon %d, growth model %s",
            self.options.run_id,
            self.initial_state.identifier,
            self.horizon,
            model_name(self.growth_model),
        )

    def _cancel(self) -> None:
        self._state = BuilderState.CANCELLED
        logger.info("Run %s cancelled after %d periods", self.options.run_id, self._period)
        if self._period == 0:
            raise SimulationCancelled(0)
        self.tree.seal()
        raise SimulationCancelled(self._period, self.tree)

    def step(self) -> bool:
        """
        Expand exactly one period.

        Returns:
            True while more periods remain, False once the run is COMPLETE

        Raises:
            SimulationCancelled: If cancellation was requested
            InvalidStandError: If the initial state is malformed (first step)
            RuntimeError: If the builder is already COMPLETE or CANCELLED
        """
        if self._state in (BuilderState.COMPLETE, BuilderState.CANCELLED):
            raise RuntimeError(f"Schedule builder is {self._state.value}")
        if self._state is BuilderState.IDLE:
            self._start()
        if self.options.cancelled:
            self._cancel()

        period = self._period
        frontier = self.tree.frontier(period)
        entries = self.table.eligible_operations(period)
        expansions = self._expand_frontier(frontier, period, entries)
        self._commit(frontier, expansions, period)

        self._period += 1
        if self._period == self.horizon:
            for index in self.tree.frontier(self._period):
                self.tree.mark(index, NodeStatus.COMPLETE)
            self.tree.seal()
            self._state = BuilderState.COMPLETE
            logger.info(
                "Run %s complete: %d nodes, %d failed branches",
                self.options.run_id,
                len(self.tree),
                len(self.tree.failed_branches()),
            )
            return False
        return True

    def run(self) -> TrajectoryTree:
        """Expand every remaining period and return the sealed tree."""
        while self._state is not BuilderState.COMPLETE:
            self.step()
        return self.tree

    def _expand_frontier(
        self, frontier: list[int], period: int, entries: tuple[DeclarationEntry, ...]
    ) -> dict[int, NodeExpansion]:
        args = dict(
            period=period,
            entries=entries,
            growth_model=self.growth_model,
            allow_no_action=self.options.allow_no_action,
            max_children=self.options.max_children_per_node,
        )
        workers = min(self.options.max_parallelism, len(frontier))
        if workers <= 1:
            return {
                index: expand_node(index, self.tree.state(index), **args)
                for index in frontier
            }

        results = {}
        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_node = {
                executor.submit(expand_node, index, self.tree.state(index), **args): index
                for index in frontier
            }
            for future in as_completed(future_to_node):
                results[future_to_node[future]] = future.result()
        return results

    def _commit(
        self, frontier: list[int], expansions: dict[int, NodeExpansion], period: int
    ) -> None:
        tree = self.tree
        children = 0
        failed = 0
        # Frontier order fixes node indices regardless of completion order
        for index in frontier:
            expansion = expansions[index]
            for child in expansion.children:
                status = NodeStatus.FAILED if child.failure else NodeStatus.PENDING
                tree.add_child(
                    index,
                    child.state,
                    child.label,
                    status,
                    child.failure,
                    expansion.grown,
                )
                children += 1
                if child.failure is not None:
                    failed += 1
                    logger.warning(
                        "Stand %s node %d: %s", child.state.identifier, index, child.failure
                    )
            if expansion.failure is not None:
                tree.mark(index, NodeStatus.FAILED, expansion.failure)
                failed += 1
                logger.warning(
                    "Stand %s node %d marked failed at period %d: %s",
                    tree.state(index).identifier,
                    index,
                    period,
                    expansion.failure,
                )
            else:
                tree.mark(index, NodeStatus.EXPANDED)

        next_frontier = tree.frontier(period + 1)
        kept, dropped = sample_frontier(next_frontier, self.options.max_frontier, self._rng)
        for index in dropped:
            tree.mark(index, NodeStatus.PRUNED)
        if dropped:
            logger.info(
                "Period %d: kept %d of %d frontier nodes", period, len(kept), len(next_frontier)
            )
        log_period_summary(logger, period, len(frontier), children, failed)


def build_trajectories(
    initial_state: StandState,
    declaration_table: DeclarationTable,
    horizon: int,
    options: SimulationOptions | None = None,
    growth_model: GrowthModel | None = None,
) -> TrajectoryTree:
    """
    Build the trajectory tree for one stand.

    Args:
        initial_state: Root stand state
        declaration_table: Validated declaration table for this horizon
        horizon: Number of periods to simulate
        options: Run options (allow_no_action, max_parallelism, ...)
        growth_model: Growth model (defaults to ReferenceGrowth())

    Returns:
        Sealed TrajectoryTree; branch failures are recorded on nodes

    Raises:
        FatalError: Invalid inputs, malformed initial stand, or cancellation
            (SimulationCancelled)

    Example:
        >>> table = DeclarationTable(2, {0: [DeclarationEntry(thin, {"intensity": 0.3})]})
        >>> tree = build_trajectories(stand, table, horizon=2)
        >>> tree.operation_chains()
        [('thinning_from_below', 'no_action'), ('no_action', 'no_action')]
    """
    builder = ScheduleBuilder(
        initial_state, declaration_table, horizon, options, growth_model
    )
    return builder.run()
