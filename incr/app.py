"""App: central object that wires together incr_dir, db, store, resolver, ranker, worker."""

import pathlib
import sqlite3
import sys
from datetime import datetime

from incr.config import FULL, Config, get_incr_dir, load_settings
from incr.db import init_db
from incr.errors import InvalidInterval
from incr.intervals import IntervalScheduler
from incr.models import NodeState
from incr.pretag import RUNNING, PretaggingWorker, PretagHandle
from incr.propagation import PriorityResolver
from incr.ranker import DueSet, DueSetRanker
from incr.store import PriorityStore, utcnow


class App:
    """Holds all shared state for an incr session.

    Usage:
        app = App(incr_dir="/path/to/incr")
        app.open()                       # uses incr_dir/incr.db
        app.track("n1", "incremental")
        app.set_priority("n1", 5)
        app.complete_repetition("n1")
        ids = list(app.due_set())
        app.close()

    For testing:
        app = App(incr_dir=tmp_path, config=Config(...))
        app.open(":memory:", autostart=False)
    """

    def __init__(self, incr_dir: pathlib.Path | str | None = None,
                 config: Config | None = None):
        if incr_dir is None:
            incr_dir = get_incr_dir()
        self.incr_dir = pathlib.Path(incr_dir)
        self.settings = load_settings(self.incr_dir)
        self.config = config or Config.from_settings(self.settings)
        self.conn: sqlite3.Connection | None = None
        self.store: PriorityStore | None = None
        self.resolver: PriorityResolver | None = None
        self.scheduler = IntervalScheduler(self.config)
        self.ranker: DueSetRanker | None = None
        self.worker: PretaggingWorker | None = None
        self._handle: PretagHandle | None = None

    @property
    def mode(self) -> str:
        return self.config.effective_mode()

    def open(self, db_path: pathlib.Path | str | None = None,
             autostart: bool = True) -> PriorityStore:
        """Connect to the database and build the components over it.

        In full mode a background pretagging pass is started unless
        autostart is False.
        """
        if db_path is None:
            db_path = self.incr_dir / "incr.db"
        self.conn = init_db(db_path)
        self.store = PriorityStore.load(self.conn)
        self.resolver = PriorityResolver(self.store, self.config)
        self.ranker = DueSetRanker(self.store, self.resolver, self.config)
        self.worker = PretaggingWorker(self.store, self.resolver, self.scheduler, self.config)
        if autostart and self.mode == FULL:
            self._handle = self.worker.start()
        return self.store

    # ── lifecycle ───────────────────────────────────────────────────────

    def track(self, node_id: str, kind: str, parent_id: str | None = None,
              due_at: datetime | None = None) -> NodeState:
        self.store.track(node_id, kind, parent_id)
        if due_at is not None:
            self.store.upsert_due_at(node_id, due_at)
        return self.get(node_id)

    def untrack(self, node_id: str):
        self.store.untrack(node_id)

    def move(self, node_id: str, parent_id: str | None) -> NodeState:
        self.store.move(node_id, parent_id)
        return self.get(node_id)

    # ── queries ─────────────────────────────────────────────────────────

    def get(self, node_id: str) -> NodeState:
        """Node state with its effective priority resolved."""
        self.resolver.resolve(node_id)
        return self.store.get(node_id)

    def due_set(self, now: datetime | None = None, kind: str | None = None) -> DueSet:
        return self.ranker.due_set(now, kind)

    def shield(self, now: datetime | None = None, kind: str | None = None) -> list[str]:
        """Top due ids; empty in light mode or when the shield is hidden."""
        if self.mode != FULL or not self.config.display_priority_shield:
            return []
        return self.ranker.shield(now, self.config.shield_top_k, kind)

    def relative_priority(self, node_id: str) -> float:
        if self.mode != FULL:
            raise ValueError("Relative priority is only available in full performance mode")
        return self.ranker.relative_priority(node_id)

    # ── mutations ───────────────────────────────────────────────────────

    def set_priority(self, node_id: str, value: int | None,
                     now: datetime | None = None) -> NodeState:
        """Set a node's explicit priority; None reverts it to inherited."""
        self.store.set_explicit_priority(node_id, value, now)
        return self.get(node_id)

    def complete_repetition(self, node_id: str, now: datetime | None = None) -> datetime:
        """Record a repetition at now and return the node's next due date."""
        now = now or utcnow()
        with self.store.lock(node_id):
            state = self.store.get(node_id)
            try:
                interval, due = self.scheduler.schedule(state.last_interval, now)
            except InvalidInterval as e:
                e.node_id = node_id
                e.prior = state
                raise
            self.store.record_repetition(node_id, now, interval, next_due_at=due)
        return due

    def upsert_due_at(self, node_id: str, timestamp: datetime) -> NodeState:
        return self.store.upsert_due_at(node_id, timestamp)

    def reset_due_at(self, node_id: str, timestamp: datetime | None = None) -> NodeState:
        return self.store.reset_due_at(node_id, timestamp)

    # ── pretagging ──────────────────────────────────────────────────────

    def run_pretagging(self) -> PretagHandle:
        """Start (or return the already running) background pretagging pass."""
        if self.mode != FULL:
            raise ValueError("Pretagging is only available in full performance mode")
        if self._handle is not None and self._handle.state == RUNNING:
            return self._handle
        self._handle = self.worker.start()
        return self._handle

    def close(self):
        """Stop any running pass at its next chunk boundary and close the database."""
        if self._handle is not None and self._handle.state == RUNNING:
            self._handle.cancel()
            try:
                self._handle.wait()
            except Exception as e:
                print(f"Warning: pretagging ended with an error: {e}", file=sys.stderr)
        self._handle = None
        if self.conn:
            self.conn.close()
            self.conn = None
