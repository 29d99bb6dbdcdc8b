"""PriorityStore: authoritative per-node priority, due date and history.

Holds every tracked node in an id-indexed arena, with an optional SQLite
connection behind it (write-through). Mutations of one node are serialized
by that node's lock; reads and writes of different nodes do not contend.

Resolved effective priorities live in a separate cache guarded by
generation numbers: every invalidation bumps the generation of the
affected nodes, and a cache write carrying an older generation is
dropped. That keeps a concurrent priority edit authoritative over any
value a background pass was computing when the edit landed.
"""

import sqlite3
import threading
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone

from incr import db
from incr.errors import InvalidInterval, InvalidRange, NotFound, OutOfOrder, StoreError
from incr.models import (KINDS, MAX_PRIORITY, MIN_PRIORITY, SOURCE_MANUAL, NodeState,
                         Repetition, Resolution)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PriorityStore:
    def __init__(self, conn: sqlite3.Connection | None = None):
        self.conn = conn
        self._nodes: dict[str, NodeState] = {}
        self._children: dict[str, set[str]] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.RLock()
        self._db_lock = threading.Lock()
        self._cache_lock = threading.Lock()
        self._resolved: dict[str, Resolution] = {}
        self._generations: dict[str, int] = {}
        self._tick = 0
        self._dirty: set[str] = set()
        self._checkpoint: str | None = None

    @classmethod
    def load(cls, conn: sqlite3.Connection) -> "PriorityStore":
        """Rebuild a store from a database written by a previous instance."""
        store = cls(conn)
        try:
            rows = db.read_nodes(conn)
        except sqlite3.Error as e:
            raise StoreError(f"cannot read nodes: {e}") from e
        for state, origin in rows:
            if state.effective_priority is not None:
                store._resolved[state.id] = Resolution(
                    state.effective_priority, state.priority_source, origin)
            state = replace(state, effective_priority=None,
                            priority_source=SOURCE_MANUAL
                            if state.explicit_priority is not None else None)
            store._nodes[state.id] = state
            if state.parent_id is not None:
                store._children.setdefault(state.parent_id, set()).add(state.id)
            store._dirty.add(state.id)
        return store

    # ── structure ───────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def node_ids(self) -> list[str]:
        """All tracked ids in stable (sorted) order."""
        with self._guard:
            return sorted(self._nodes)

    def lock(self, node_id: str) -> threading.RLock:
        with self._guard:
            lk = self._locks.get(node_id)
            if lk is None:
                lk = self._locks[node_id] = threading.RLock()
            return lk

    def peek(self, node_id: str) -> NodeState | None:
        """Live state without locking. Callers must not mutate it."""
        return self._nodes.get(node_id)

    def children(self, node_id: str) -> set[str]:
        with self._guard:
            return set(self._children.get(node_id, ()))

    def descendants(self, node_id: str) -> list[str]:
        """Every id below node_id, breadth first. Safe on cyclic input."""
        seen = {node_id}
        order = []
        queue = deque([node_id])
        with self._guard:
            while queue:
                current = queue.popleft()
                for child in sorted(self._children.get(current, ())):
                    if child not in seen:
                        seen.add(child)
                        order.append(child)
                        queue.append(child)
        return order

    def track(self, node_id: str, kind: str, parent_id: str | None = None,
              now: datetime | None = None) -> NodeState:
        """Start tracking a node. Re-tracking moves it if the parent changed."""
        if kind not in KINDS:
            raise ValueError(f"Unknown kind: {kind!r}")
        with self.lock(node_id), self._guard:
            existing = self._nodes.get(node_id)
            if existing is not None:
                if existing.kind != kind:
                    raise ValueError(
                        f"Node {node_id} is {existing.kind}; kind cannot change to {kind}")
                if existing.parent_id == parent_id:
                    return self.get(node_id)
                return self.move(node_id, parent_id)
            state = NodeState(id=node_id, kind=kind, parent_id=parent_id,
                              created_at=now or utcnow())
            self._persist(db.write_node, state)
            self._nodes[node_id] = state
            if parent_id is not None:
                self._children.setdefault(parent_id, set()).add(node_id)
            # children tracked before their parent now have an ancestor
            self.invalidate_subtree(node_id)
            return self.get(node_id)

    def untrack(self, node_id: str):
        """Discard all scheduling state for a node."""
        with self.lock(node_id), self._guard:
            state = self._require(node_id)
            self._persist(db.delete_node, node_id)
            del self._nodes[node_id]
            if state.parent_id is not None:
                self._children.get(state.parent_id, set()).discard(node_id)
            below = self.descendants(node_id)
            # the lock object stays: waiters and a later re-track must share it
            with self._cache_lock:
                self._resolved.pop(node_id, None)
                self._generations.pop(node_id, None)
                self._dirty.add(node_id)
            self._invalidate(below)

    def move(self, node_id: str, parent_id: str | None) -> NodeState:
        with self.lock(node_id), self._guard:
            state = self._require(node_id)
            self._persist(db.write_node, replace(state, parent_id=parent_id))
            if state.parent_id is not None:
                self._children.get(state.parent_id, set()).discard(node_id)
            if parent_id is not None:
                self._children.setdefault(parent_id, set()).add(node_id)
            state.parent_id = parent_id
            self.invalidate_subtree(node_id)
            return self.get(node_id)

    # ── reads ───────────────────────────────────────────────────────────

    def get(self, node_id: str) -> NodeState:
        with self.lock(node_id):
            state = self._require(node_id)
            with self._cache_lock:
                res = self._resolved.get(node_id)
            snap = state.snapshot()
        if res is not None:
            snap.effective_priority = res.value
            snap.priority_source = res.source
        return snap

    def cached(self, node_id: str) -> Resolution | None:
        with self._cache_lock:
            return self._resolved.get(node_id)

    def generation(self, node_id: str) -> int:
        with self._cache_lock:
            return self._generations.get(node_id, 0)

    # ── mutations ───────────────────────────────────────────────────────

    def set_explicit_priority(self, node_id: str, value: int | None,
                              now: datetime | None = None) -> NodeState:
        """Set (or with None, clear) a node's own priority.

        Edits are ordered by their timestamp: an edit older than the one
        already applied is rejected with OutOfOrder.
        """
        now = now or utcnow()
        with self.lock(node_id):
            state = self._require(node_id)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)
                                      or not MIN_PRIORITY <= value <= MAX_PRIORITY):
                raise InvalidRange(
                    f"priority must be {MIN_PRIORITY}-{MAX_PRIORITY}, got {value!r}",
                    node_id, self.get(node_id))
            if state.priority_updated_at is not None and now < state.priority_updated_at:
                raise OutOfOrder(
                    f"priority edit at {now.isoformat()} is older than the last edit "
                    f"at {state.priority_updated_at.isoformat()}", node_id, self.get(node_id))
            source = SOURCE_MANUAL if value is not None else None
            updated = replace(state, explicit_priority=value, priority_source=source,
                              priority_updated_at=now)

            def apply():
                state.explicit_priority = value
                state.priority_source = source
                state.priority_updated_at = now

            self._invalidate([node_id] + self.descendants(node_id),
                             write=lambda conn: db.write_node(conn, updated), apply=apply)
            return self.get(node_id)

    def record_repetition(self, node_id: str, timestamp: datetime, new_interval: float,
                          next_due_at: datetime | None = None) -> NodeState:
        """Append a repetition, and optionally the due date it produced, atomically."""
        with self.lock(node_id):
            state = self._require(node_id)
            last = state.last_repetition
            if last is not None and timestamp <= last.at:
                raise OutOfOrder(
                    f"repetition at {timestamp.isoformat()} is not after the last one "
                    f"at {last.at.isoformat()}", node_id, self.get(node_id))
            if not new_interval > 0:
                raise InvalidInterval(f"interval must be > 0 days, got {new_interval!r}",
                                      node_id, self.get(node_id))
            rep = Repetition(at=timestamp, interval=new_interval)
            seq = len(state.history)

            def write(conn):
                db.append_repetition(conn, node_id, seq, rep)
                if next_due_at is not None:
                    db.write_node(conn, replace(state, next_due_at=next_due_at))
            self._persist_fn(write)

            state.history = state.history + (rep,)
            if next_due_at is not None:
                state.next_due_at = next_due_at
            self._mark_dirty(node_id)
            return self.get(node_id)

    def upsert_due_at(self, node_id: str, timestamp: datetime) -> NodeState:
        """Set the due date if unset, or move it forward. Rewinds are rejected."""
        with self.lock(node_id):
            state = self._require(node_id)
            if state.next_due_at is not None and timestamp < state.next_due_at:
                raise OutOfOrder(
                    f"due date {timestamp.isoformat()} is before the current "
                    f"{state.next_due_at.isoformat()}; use reset_due_at", node_id,
                    self.get(node_id))
            return self._set_due(state, timestamp)

    def reset_due_at(self, node_id: str, timestamp: datetime | None = None) -> NodeState:
        """Explicitly set (or clear) the due date, in either direction."""
        with self.lock(node_id):
            return self._set_due(self._require(node_id), timestamp)

    def _set_due(self, state: NodeState, timestamp: datetime | None) -> NodeState:
        self._persist(db.write_node, replace(state, next_due_at=timestamp))
        state.next_due_at = timestamp
        self._mark_dirty(state.id)
        return self.get(state.id)

    # ── effective-priority cache ────────────────────────────────────────

    def cache_resolutions(self, items: list[tuple[str, Resolution, int]]) -> list[str]:
        """Store resolved priorities, each tagged with the generation read
        before it was computed. Returns the ids actually written."""
        # Invalidations bump generations under _db_lock, so holding it from
        # the generation check through the commit keeps stale rows out.
        with self._db_lock:
            with self._cache_lock:
                accepted = [(node_id, res) for node_id, res, gen in items
                            if node_id in self._nodes
                            and self._generations.get(node_id, 0) == gen]
            durable = [(i, res) for i, res in accepted if not res.cyclic]
            if durable and self.conn is not None:
                def write(conn):
                    for node_id, res in durable:
                        db.write_effective(conn, node_id, res.value, res.source,
                                           res.origin_id)
                self._commit(write)
            with self._cache_lock:
                for node_id, res in accepted:
                    self._resolved[node_id] = res
        return [node_id for node_id, _ in accepted]

    def invalidate_subtree(self, node_id: str) -> list[str]:
        """Drop cached effective priorities for node_id and everything below it."""
        ids = [node_id] + self.descendants(node_id)
        self._invalidate(ids)
        return ids

    def _invalidate(self, ids: list[str], write=None, apply=None):
        """Clear cached priorities for ids, in the same transaction as write.

        apply mutates memory once the transaction has committed; the
        generation bump follows it, still under _db_lock.
        """
        with self._db_lock:
            live = [i for i in ids if i in self._nodes]
            if self.conn is not None and (write is not None or live):
                def tx(conn):
                    if write is not None:
                        write(conn)
                    if live:
                        db.clear_effective(conn, live)
                self._commit(tx)
            if apply is not None:
                apply()
            with self._cache_lock:
                self._tick += 1
                for i in ids:
                    self._resolved.pop(i, None)
                    self._generations[i] = self._tick
                    self._dirty.add(i)

    def _mark_dirty(self, node_id: str):
        with self._cache_lock:
            self._dirty.add(node_id)

    def take_dirty(self) -> set[str]:
        """Ids mutated since the last call (including removed ones)."""
        with self._cache_lock:
            dirty, self._dirty = self._dirty, set()
        return dirty

    # ── pretagging checkpoint ───────────────────────────────────────────

    def get_checkpoint(self) -> str | None:
        if self.conn is None:
            return self._checkpoint
        with self._db_lock:
            try:
                return db.get_checkpoint(self.conn)
            except sqlite3.Error as e:
                raise StoreError(f"cannot read checkpoint: {e}") from e

    def set_checkpoint(self, last_id: str | None):
        self._persist(db.set_checkpoint, last_id)
        self._checkpoint = last_id

    # ── helpers ─────────────────────────────────────────────────────────

    def _require(self, node_id: str) -> NodeState:
        state = self._nodes.get(node_id)
        if state is None:
            raise NotFound(f"Unknown node: {node_id}", node_id)
        return state

    def _persist(self, fn, *args):
        self._persist_fn(lambda conn: fn(conn, *args))

    def _persist_fn(self, write):
        if self.conn is None:
            return
        with self._db_lock:
            self._commit(write)

    def _commit(self, write):
        """Run write and commit. Caller holds _db_lock."""
        try:
            write(self.conn)
            self.conn.commit()
        except sqlite3.Error as e:
            try:
                self.conn.rollback()
            except sqlite3.Error:
                pass
            raise StoreError(f"storage write failed: {e}") from e
