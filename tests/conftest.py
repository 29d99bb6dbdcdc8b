"""Shared test fixtures."""

from datetime import datetime, timezone

import pytest

from incr.app import App
from incr.config import Config
from incr.db import init_db
from incr.intervals import IntervalScheduler
from incr.models import FLASHCARD, INCREMENTAL
from incr.propagation import PriorityResolver
from incr.ranker import DueSetRanker
from incr.store import PriorityStore

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def db_conn():
    """In-memory SQLite database with schema applied."""
    conn = init_db(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def store():
    """Store without a backing database."""
    return PriorityStore()


@pytest.fixture
def resolver(store, config):
    return PriorityResolver(store, config)


@pytest.fixture
def scheduler(config):
    return IntervalScheduler(config)


@pytest.fixture
def ranker(store, resolver, config):
    return DueSetRanker(store, resolver, config)


@pytest.fixture
def tree(store):
    """root(incremental, 20) > chapter(incremental) > card1, card2 (flashcards);
    card3 is a flashcard with no parent."""
    store.track("root", INCREMENTAL, now=NOW)
    store.set_explicit_priority("root", 20)
    store.track("chapter", INCREMENTAL, "root", now=NOW)
    store.track("card1", FLASHCARD, "chapter", now=NOW)
    store.track("card2", FLASHCARD, "chapter", now=NOW)
    store.track("card3", FLASHCARD, now=NOW)
    return store


@pytest.fixture
def app(tmp_path):
    """App over a tmp incr_dir and an in-memory DB, light mode."""
    a = App(incr_dir=tmp_path, config=Config())
    a.open(":memory:", autostart=False)
    yield a
    a.close()


def reference_priority(store, config, node_id):
    """From-scratch effective priority, for comparing against cached values."""
    seen = set()
    current = node_id
    while current is not None and current in store and current not in seen:
        seen.add(current)
        state = store.peek(current)
        if state.explicit_priority is not None:
            return state.explicit_priority
        current = state.parent_id
    return config.default_priority(store.peek(node_id).kind)


@pytest.fixture
def reference():
    return reference_priority
