"""Tests for the App facade."""

from datetime import timedelta

import pytest

from incr.app import App
from incr.config import Config
from incr.errors import InvalidInterval, NotFound, OutOfOrder
from incr.models import FLASHCARD, INCREMENTAL
from incr.pretag import COMPLETED

from conftest import NOW


@pytest.fixture
def full_app(tmp_path):
    a = App(incr_dir=tmp_path, config=Config(performance_mode="full"))
    a.open(":memory:", autostart=False)
    yield a
    a.close()


def test_repetition_sequence(app):
    app.track("n1", INCREMENTAL)
    now = NOW
    expected = [1, 1.5, 2.25, 3.375]
    for interval in expected:
        due = app.complete_repetition("n1", now)
        assert due == now + timedelta(days=interval)
        assert app.get("n1").next_due_at == due
        now = due
    assert [r.interval for r in app.get("n1").history] == expected


def test_repetition_out_of_order_keeps_history(app):
    app.track("n1", INCREMENTAL)
    due = app.complete_repetition("n1", NOW)
    with pytest.raises(OutOfOrder) as exc:
        app.complete_repetition("n1", NOW - timedelta(hours=1))
    assert exc.value.prior.next_due_at == due
    state = app.get("n1")
    assert len(state.history) == 1
    assert state.next_due_at == due


def test_invalid_interval_leaves_node_untouched(tmp_path):
    a = App(incr_dir=tmp_path, config=Config(initial_interval=0.5, truncate_intervals=True))
    a.open(":memory:", autostart=False)
    try:
        a.track("n1", FLASHCARD, due_at=NOW)
        with pytest.raises(InvalidInterval) as exc:
            a.complete_repetition("n1", NOW)
        assert exc.value.node_id == "n1"
        assert exc.value.prior.next_due_at == NOW
        state = a.get("n1")
        assert state.history == ()
        assert state.next_due_at == NOW
    finally:
        a.close()


def test_repetition_on_unknown_node(app):
    with pytest.raises(NotFound):
        app.complete_repetition("ghost", NOW)


def test_track_with_due_date(app):
    state = app.track("n1", FLASHCARD, due_at=NOW)
    assert state.next_due_at == NOW
    assert state.effective_priority == 50
    assert state.priority_source == "default"


def test_set_priority_and_revert(app):
    app.track("book", INCREMENTAL)
    app.track("card", FLASHCARD, "book")
    app.set_priority("book", 12)
    app.set_priority("card", 3)
    assert app.get("card").effective_priority == 3
    state = app.set_priority("card", None)
    assert state.effective_priority == 12
    assert state.priority_source == "inherited"


def test_move_changes_inheritance(app):
    app.track("a", INCREMENTAL)
    app.track("b", INCREMENTAL)
    app.set_priority("a", 5)
    app.set_priority("b", 95)
    app.track("card", FLASHCARD, "a")
    assert app.get("card").effective_priority == 5
    assert app.move("card", "b").effective_priority == 95


def test_due_set_and_shield(full_app):
    for node_id, priority in (("x", 40), ("y", 10), ("z", 70), ("w", 20)):
        full_app.track(node_id, FLASHCARD, due_at=NOW)
        full_app.set_priority(node_id, priority)
    assert list(full_app.due_set(NOW)) == ["y", "w", "x", "z"]
    assert full_app.shield(NOW) == ["y", "w", "x"]


def test_shield_is_off_in_light_mode(app):
    app.track("n1", FLASHCARD, due_at=NOW)
    assert list(app.due_set(NOW)) == ["n1"]
    assert app.shield(NOW) == []


def test_shield_can_be_hidden(tmp_path):
    a = App(incr_dir=tmp_path, config=Config(performance_mode="full",
                                             display_priority_shield=False))
    a.open(":memory:", autostart=False)
    try:
        a.track("n1", FLASHCARD, due_at=NOW)
        assert a.shield(NOW) == []
        assert list(a.due_set(NOW)) == ["n1"]
    finally:
        a.close()


def test_relative_priority_needs_full_mode(app, full_app):
    app.track("n1", FLASHCARD)
    with pytest.raises(ValueError):
        app.relative_priority("n1")
    full_app.track("n1", FLASHCARD)
    full_app.track("n2", FLASHCARD)
    full_app.set_priority("n1", 1)
    assert full_app.relative_priority("n1") == 0.0
    assert full_app.relative_priority("n2") == 50.0


@pytest.mark.parametrize("platform", ["mobile", "web"])
def test_light_override_on_small_platforms(tmp_path, platform):
    a = App(incr_dir=tmp_path, config=Config(performance_mode="full", platform=platform))
    assert a.mode == "light"
    a = App(incr_dir=tmp_path, config=Config(performance_mode="full", platform=platform,
                                             always_light_on_mobile=False,
                                             always_light_on_web=False))
    assert a.mode == "full"


def test_pretagging_needs_full_mode(app):
    with pytest.raises(ValueError):
        app.run_pretagging()


def test_run_pretagging(full_app):
    full_app.track("book", INCREMENTAL)
    full_app.track("card", FLASHCARD, "book")
    full_app.set_priority("book", 30)
    summary = full_app.run_pretagging().wait(timeout=5)
    assert summary.state == COMPLETED
    assert full_app.store.cached("card").value == 30


def test_full_mode_autostarts_pretagging(tmp_path):
    seed = App(incr_dir=tmp_path, config=Config())
    seed.open()
    seed.track("n1", FLASHCARD)
    seed.close()

    a = App(incr_dir=tmp_path, config=Config(performance_mode="full"))
    a.open()
    try:
        assert a.run_pretagging().wait(timeout=5).state == COMPLETED
        assert a.store.cached("n1").value == 50
    finally:
        a.close()


def test_state_persists_across_reopen(tmp_path):
    a = App(incr_dir=tmp_path, config=Config())
    a.open()
    a.track("book", INCREMENTAL)
    a.track("card", FLASHCARD, "book")
    a.set_priority("book", 33)
    due = a.complete_repetition("card", NOW)
    a.close()
    assert (tmp_path / "incr.db").exists()

    b = App(incr_dir=tmp_path, config=Config())
    b.open()
    try:
        card = b.get("card")
        assert card.parent_id == "book"
        assert card.effective_priority == 33
        assert card.next_due_at == due
        assert card.last_interval == 1
    finally:
        b.close()


def test_settings_file_is_read(tmp_path):
    (tmp_path / "settings.toml").write_text(
        'performance_mode = "full"\nshield_top_k = 5\nmultiplier = 2.0\n')
    a = App(incr_dir=tmp_path)
    assert a.mode == "full"
    assert a.config.shield_top_k == 5
    assert a.config.multiplier == 2.0
