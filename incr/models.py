"""Shared data classes used across the store, resolver, scheduler and ranker."""

from dataclasses import dataclass, field, replace
from datetime import datetime

INCREMENTAL = "incremental"
FLASHCARD = "flashcard"
KINDS = (INCREMENTAL, FLASHCARD)

# priority_source values
SOURCE_MANUAL = "manual"
SOURCE_INHERITED = "inherited"
SOURCE_DEFAULT = "default"

MIN_PRIORITY = 0
MAX_PRIORITY = 100


@dataclass(frozen=True)
class Repetition:
    at: datetime
    interval: float  # days, fractional


@dataclass
class NodeState:
    id: str
    kind: str
    parent_id: str | None = None
    explicit_priority: int | None = None
    priority_source: str | None = None
    priority_updated_at: datetime | None = None
    effective_priority: int | None = None
    next_due_at: datetime | None = None
    history: tuple[Repetition, ...] = ()
    created_at: datetime | None = None

    @property
    def last_repetition(self) -> Repetition | None:
        return self.history[-1] if self.history else None

    @property
    def last_interval(self) -> float | None:
        rep = self.last_repetition
        return rep.interval if rep else None

    def snapshot(self) -> "NodeState":
        """Detached copy; history is an immutable tuple so a shallow copy suffices."""
        return replace(self)


@dataclass(frozen=True)
class Resolution:
    """Where an effective priority came from.

    origin_id is the node holding the explicit priority, or None when the
    value is a kind default. cyclic marks a default used because the
    parent chain loops; such values are kept in memory only.
    """
    value: int
    source: str
    origin_id: str | None = None
    cyclic: bool = False


@dataclass
class PretagSummary:
    state: str
    processed: int = 0
    skipped: list[str] = field(default_factory=list)
    last_id: str | None = None
