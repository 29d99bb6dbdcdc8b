"""Database schema, initialization, and node record (de)serialization."""

import pathlib
import sqlite3
from datetime import datetime

from incr.models import NodeState, Repetition

SCHEMA = """
CREATE TABLE IF NOT EXISTS nodes (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL CHECK(kind IN ('incremental','flashcard')),
    parent_id TEXT,
    explicit_priority INTEGER CHECK(explicit_priority IS NULL OR explicit_priority BETWEEN 0 AND 100),
    priority_source TEXT CHECK(priority_source IS NULL OR priority_source IN ('manual','inherited','default')),
    priority_updated_at TEXT,
    effective_priority INTEGER,
    effective_origin TEXT,
    next_due_at TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_nodes_parent ON nodes(parent_id);

CREATE TABLE IF NOT EXISTS repetitions (
    node_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
    seq INTEGER NOT NULL,
    at TEXT NOT NULL,
    interval REAL NOT NULL CHECK(interval > 0),
    PRIMARY KEY (node_id, seq)
);

CREATE TABLE IF NOT EXISTS pretag_progress (
    id INTEGER PRIMARY KEY CHECK(id = 1),
    last_id TEXT,
    updated_at TEXT NOT NULL
);
"""


def init_db(db_path: pathlib.Path | str) -> sqlite3.Connection:
    db_path = pathlib.Path(db_path)
    if str(db_path) != ":memory:":
        db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=5, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    if str(db_path) != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.executescript(SCHEMA)
    conn.commit()
    return conn


def to_ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def from_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def read_nodes(conn: sqlite3.Connection) -> list[tuple[NodeState, str | None]]:
    """All persisted nodes with their repetition history.

    Returns (state, effective_origin) pairs; effective_priority is the
    materialized value, or None if it was invalidated.
    """
    history: dict[str, list[Repetition]] = {}
    for row in conn.execute("SELECT node_id, at, interval FROM repetitions ORDER BY node_id, seq"):
        history.setdefault(row["node_id"], []).append(
            Repetition(at=from_ts(row["at"]), interval=row["interval"]))

    result = []
    for row in conn.execute("SELECT * FROM nodes ORDER BY id"):
        state = NodeState(
            id=row["id"], kind=row["kind"], parent_id=row["parent_id"],
            explicit_priority=row["explicit_priority"],
            priority_source=row["priority_source"],
            priority_updated_at=from_ts(row["priority_updated_at"]),
            effective_priority=row["effective_priority"],
            next_due_at=from_ts(row["next_due_at"]),
            history=tuple(history.get(row["id"], ())),
            created_at=from_ts(row["created_at"]),
        )
        result.append((state, row["effective_origin"]))
    return result


def write_node(conn: sqlite3.Connection, state: NodeState):
    """Insert or update the record fields; materialized priorities are left alone."""
    conn.execute("""
        INSERT INTO nodes (id, kind, parent_id, explicit_priority, priority_source,
                           priority_updated_at, next_due_at, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            parent_id=excluded.parent_id,
            explicit_priority=excluded.explicit_priority,
            priority_updated_at=excluded.priority_updated_at,
            next_due_at=excluded.next_due_at
    """, (state.id, state.kind, state.parent_id, state.explicit_priority,
          state.priority_source, to_ts(state.priority_updated_at),
          to_ts(state.next_due_at), to_ts(state.created_at)))


def append_repetition(conn: sqlite3.Connection, node_id: str, seq: int, rep: Repetition):
    conn.execute("INSERT INTO repetitions (node_id, seq, at, interval) VALUES (?, ?, ?, ?)",
                 (node_id, seq, to_ts(rep.at), rep.interval))


def clear_effective(conn: sqlite3.Connection, node_ids: list[str]):
    conn.executemany(
        "UPDATE nodes SET effective_priority=NULL, effective_origin=NULL, "
        "priority_source=CASE WHEN explicit_priority IS NULL THEN NULL ELSE 'manual' END "
        "WHERE id=?",
        [(i,) for i in node_ids])


def delete_node(conn: sqlite3.Connection, node_id: str):
    conn.execute("DELETE FROM repetitions WHERE node_id=?", (node_id,))
    conn.execute("DELETE FROM nodes WHERE id=?", (node_id,))


def get_checkpoint(conn: sqlite3.Connection) -> str | None:
    row = conn.execute("SELECT last_id FROM pretag_progress WHERE id=1").fetchone()
    return row["last_id"] if row else None


def set_checkpoint(conn: sqlite3.Connection, last_id: str | None):
    conn.execute("""
        INSERT OR REPLACE INTO pretag_progress (id, last_id, updated_at)
        VALUES (1, ?, datetime('now'))
    """, (last_id,))


def write_effective(conn: sqlite3.Connection, node_id: str, value: int, source: str,
                    origin_id: str | None):
    conn.execute(
        "UPDATE nodes SET effective_priority=?, priority_source=?, effective_origin=? WHERE id=?",
        (value, source, origin_id, node_id))
