"""
Configuration dataclasses and constants for trajectory building.

Note: options are validated on construction, so a bad option value fails
before any stand is touched.
"""

import os
import threading
from dataclasses import dataclass, field
from datetime import datetime

from .logging_config import get_logger

logger = get_logger(__name__)


def _default_parallelism() -> int:
    value = os.environ.get("METSI_MAX_WORKERS")
    if value:
        try:
            return max(1, int(value))
        except ValueError:
            logger.warning(
                "Ignoring METSI_MAX_WORKERS=%r (not an integer), using cpu count", value
            )
    return os.cpu_count() or 1


# Default worker count (override with METSI_MAX_WORKERS)
DEFAULT_MAX_PARALLELISM = _default_parallelism()

# Label of the implicit "grow only" branch
NO_ACTION_LABEL = "no_action"


class CancellationToken:
    """
    Cooperative cancellation flag shared between a caller and a running build.

    The schedule builder checks it at period boundaries only.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"


@dataclass
class SimulationOptions:
    """
    Options for one build_trajectories() run.

    Attributes:
        allow_no_action: Add the "no management action" branch at every node
        max_parallelism: Worker threads used to expand a period's frontier
        cancellation_token: Checked between periods (optional)

        # Combinatorial control
        max_children_per_node: Keep at most this many successful operation
            branches per node, in declaration order (None = unlimited). The
            no-action branch and failed branches are not counted.
        max_frontier: After each period, keep a seeded random sample of at
            most this many live nodes; the rest are marked PRUNED
            (None = keep everything)
        sampling_seed: Seed for frontier sampling

        run_id: Identifier for this run (timestamp by default)
    """

    allow_no_action: bool = True
    max_parallelism: int = DEFAULT_MAX_PARALLELISM
    cancellation_token: CancellationToken | None = None

    max_children_per_node: int | None = None
    max_frontier: int | None = None
    sampling_seed: int = 0

    run_id: str = field(
        default_factory=lambda: datetime.now().strftime("%Y%m%d_%H%M%S")
    )

    def __post_init__(self):
        """Validate configuration."""
        if not isinstance(self.allow_no_action, bool):
            raise TypeError(
                f"allow_no_action must be bool, got {type(self.allow_no_action)}"
            )
        if self.max_parallelism <= 0:
            raise ValueError(
                f"max_parallelism must be > 0, got {self.max_parallelism}"
            )
        if self.cancellation_token is not None and not isinstance(
            self.cancellation_token, CancellationToken
        ):
            raise TypeError(
                "cancellation_token must be CancellationToken, "
                f"got {type(self.cancellation_token)}"
            )
        if self.max_children_per_node is not None and self.max_children_per_node < 0:
            raise ValueError(
                f"max_children_per_node must be >= 0, got {self.max_children_per_node}"
            )
        if self.max_frontier is not None and self.max_frontier <= 0:
            raise ValueError(f"max_frontier must be > 0, got {self.max_frontier}")

    @property
    def cancelled(self) -> bool:
        return self.cancellation_token is not None and self.cancellation_token.cancelled
