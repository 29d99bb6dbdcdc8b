"""Error kinds raised by the scheduling core."""


class SchedulingError(Exception):
    """Base class for rejected scheduling operations.

    prior holds a snapshot of the node's state, which the rejected
    operation left unchanged (None when the node is unknown).
    """

    def __init__(self, message: str, node_id: str | None = None, prior=None):
        super().__init__(message)
        self.node_id = node_id
        self.prior = prior


class InvalidRange(SchedulingError):
    """Priority outside [0, 100]."""


class InvalidInterval(SchedulingError):
    """Computed interval is not a positive number of days."""


class OutOfOrder(SchedulingError):
    """Timestamp regression on the repetition history or due date."""


class CyclicHierarchy(SchedulingError):
    """The parent chain loops back on itself."""


class NotFound(SchedulingError):
    """Unknown node id."""


class StoreError(Exception):
    """Backing storage is missing or broken. Not recoverable."""


class ConfigError(ValueError):
    def __init__(self, problems: list[str]):
        super().__init__("; ".join(problems))
        self.problems = problems
