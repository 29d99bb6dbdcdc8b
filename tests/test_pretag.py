"""Tests for the pretagging worker."""

from datetime import timedelta

import pytest

from incr.config import Config
from incr.intervals import IntervalScheduler
from incr.models import FLASHCARD, INCREMENTAL
from incr.pretag import CANCELLED, COMPLETED, IDLE, PretaggingWorker
from incr.propagation import PriorityResolver
from incr.store import PriorityStore

from conftest import NOW


def _worker(store, config, **kwargs):
    return PretaggingWorker(store, PriorityResolver(store, config),
                            IntervalScheduler(config), config, **kwargs)


@pytest.fixture
def small_chunks():
    return Config(pretag_chunk_size=2)


def test_full_pass_materializes_every_node(tree, config, reference):
    worker = _worker(tree, config)
    assert worker.state == IDLE
    summary = worker.run()
    assert summary.state == COMPLETED
    assert summary.processed == 5
    assert summary.skipped == []
    for node_id in tree.node_ids():
        assert tree.cached(node_id).value == reference(tree, config, node_id)
    assert tree.get_checkpoint() is None


def test_empty_corpus_completes(store, config):
    summary = _worker(store, config).run()
    assert summary.state == COMPLETED
    assert summary.processed == 0


def test_cancel_at_chunk_boundary_and_resume(tree, small_chunks, reference):
    worker = _worker(tree, small_chunks)
    worker.on_chunk = lambda progress: worker.cancel()
    summary = worker.run()

    assert summary.state == CANCELLED
    assert summary.processed == 2
    assert summary.last_id == "card2"
    assert tree.get_checkpoint() == "card2"
    for node_id in ("card1", "card2"):
        assert tree.cached(node_id).value == reference(tree, small_chunks, node_id)

    worker.on_chunk = None
    summary = worker.run()
    assert summary.state == COMPLETED
    assert summary.processed == 3
    for node_id in tree.node_ids():
        assert tree.cached(node_id).value == reference(tree, small_chunks, node_id)
    assert tree.get_checkpoint() is None


def test_progress_reported_per_chunk(tree, small_chunks):
    seen = []
    worker = _worker(tree, small_chunks, on_chunk=seen.append)
    worker.run()
    assert [p["processed"] for p in seen] == [2, 4, 5]
    assert all(p["total"] == 5 for p in seen)
    assert seen[-1]["last_id"] == "root"


def test_checkpoint_survives_restart(db_conn, small_chunks):
    store = PriorityStore(db_conn)
    for i in range(5):
        store.track(f"n{i}", FLASHCARD)
    worker = _worker(store, small_chunks)
    worker.on_chunk = lambda progress: worker.cancel()
    worker.run()

    reopened = PriorityStore.load(db_conn)
    assert reopened.get_checkpoint() == "n1"
    assert reopened.cached("n0").value == 50
    summary = _worker(reopened, small_chunks).run()
    assert summary.processed == 3


def test_cycle_is_skipped_and_reported(store, config, capsys):
    store.track("a", FLASHCARD, "b")
    store.track("b", FLASHCARD, "a")
    store.track("c", INCREMENTAL)
    summary = _worker(store, config).run()
    assert summary.state == COMPLETED
    assert sorted(summary.skipped) == ["a", "b"]
    assert store.cached("a").value == 50
    assert store.cached("b").value == 50
    assert "skipped" in capsys.readouterr().err


def test_cycle_reported_again_after_restart(db_conn, config):
    store = PriorityStore(db_conn)
    store.track("a", FLASHCARD, "b")
    store.track("b", INCREMENTAL, "a")
    assert sorted(_worker(store, config).run().skipped) == ["a", "b"]

    reopened = PriorityStore.load(db_conn)
    assert reopened.cached("a") is None
    assert sorted(_worker(reopened, config).run().skipped) == ["a", "b"]


def test_node_below_cycle_is_skipped(store, config):
    store.track("a", INCREMENTAL, "b")
    store.track("b", INCREMENTAL, "a")
    store.track("leaf", FLASHCARD, "a")
    summary = _worker(store, config).run()
    assert sorted(summary.skipped) == ["a", "b", "leaf"]
    assert store.cached("leaf").value == 50


def test_breaking_the_cycle_clears_the_flag(store, config):
    store.track("a", FLASHCARD, "b")
    store.track("b", FLASHCARD, "a")
    _worker(store, config).run()
    store.move("b", None)
    summary = _worker(store, config).run()
    assert summary.skipped == []
    assert not store.cached("a").cyclic


def test_unexpected_node_failure_is_skipped(tree, config, capsys):
    worker = _worker(tree, config)
    real_resolve = worker.resolver.resolve

    def flaky(node_id, strict=False):
        if node_id == "card2":
            raise RuntimeError("boom")
        return real_resolve(node_id, strict)

    worker.resolver.resolve = flaky
    summary = worker.run()
    assert summary.state == COMPLETED
    assert summary.skipped == ["card2"]
    assert summary.processed == 5
    assert "boom" in capsys.readouterr().err


def test_due_date_derived_from_history(store, config):
    store.track("n1", INCREMENTAL)
    store.record_repetition("n1", NOW, 1.5)
    _worker(store, config).run()
    assert store.get("n1").next_due_at == NOW + timedelta(days=1.5)


def test_edit_during_pass_is_not_overwritten(tree, small_chunks, reference):
    worker = _worker(tree, small_chunks)

    def edit_once(progress):
        if progress["processed"] == 2:
            tree.set_explicit_priority("root", 64)

    worker.on_chunk = edit_once
    worker.run()
    for node_id in tree.node_ids():
        resolved = worker.resolver.resolve(node_id)
        assert resolved.value == reference(tree, small_chunks, node_id)
    assert worker.resolver.effective("card1") == 64


def test_background_start(tree, config):
    worker = _worker(tree, config)
    handle = worker.start()
    summary = handle.wait(timeout=5)
    assert summary is not None
    assert summary.state == COMPLETED
    assert handle.state == COMPLETED
    assert handle.progress()["processed"] == 5
