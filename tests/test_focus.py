"""Tests for focusflow/focus.py: focus session lifecycle."""

import threading
from datetime import date, timedelta

import pytest

from focusflow.errors import (
    ActiveSessionExists,
    AlreadyCompleted,
    AlreadyInState,
    FocusFlowError,
    SessionNotFound,
    TransientStorageError,
    ValidationError,
)


def test_start_session_defaults(engine, user):
    session = engine.sessions.start(user.id)
    assert session.session_type == "work"
    assert session.duration == 25
    assert session.start_time == engine.clock.now()
    assert session.session_date == date(2026, 3, 11)
    assert not session.completed


def test_break_durations_come_from_preferences(engine, user):
    engine.users.update_preferences(user.id, {"breakDuration": 7})
    short = engine.sessions.start(user.id, "short_break")
    assert short.duration == 7
    engine.sessions.cancel(user.id, short.id)
    assert engine.sessions.start(user.id, "long_break").duration == 15


def test_start_validation(engine, user):
    with pytest.raises(ValidationError):
        engine.sessions.start(user.id, "nap")
    with pytest.raises(ValidationError):
        engine.sessions.start(user.id, "work", duration=0)
    with pytest.raises(ValidationError):
        engine.sessions.start(user.id, "work", duration=121)


def test_start_session_already_active(engine, user):
    first = engine.sessions.start(user.id)
    with pytest.raises(ActiveSessionExists) as exc:
        engine.sessions.start(user.id, "short_break")
    assert exc.value.session_id == first.id


def test_sessions_are_per_user(engine, user, other_user):
    engine.sessions.start(user.id)
    assert engine.sessions.start(other_user.id) is not None


def test_concurrent_starts_yield_one_session(engine, user):
    outcomes: list[str] = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        try:
            engine.sessions.start(user.id)
            outcomes.append("ok")
        except ActiveSessionExists:
            outcomes.append("exists")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert outcomes.count("ok") == 1
    assert engine.store.collection("sessions").count({"userId": user.id, "completed": False}) == 1


# ── Completion ──


def test_complete_work_session_awards_xp(engine, user):
    session = engine.sessions.start(user.id)
    engine.clock.advance(minutes=25)
    result = engine.complete_session(user.id, session.id, notes="Deep work", rating=4)
    assert result.xp_earned == 25
    assert result.actual_duration == 25
    assert result.completed_on_time
    assert result.session.notes == "Deep work"
    assert result.session.rating == 4
    assert result.xp_result.total_xp == 25
    assert engine.users.require(user.id).xp == 25


def test_complete_break_session_awards_break_xp(engine, user):
    session = engine.sessions.start(user.id, "short_break")
    engine.clock.advance(minutes=5)
    assert engine.complete_session(user.id, session.id).xp_earned == 5


def test_complete_early_is_not_on_time(engine, user):
    session = engine.sessions.start(user.id)
    engine.clock.advance(minutes=10)
    result = engine.complete_session(user.id, session.id)
    assert result.actual_duration == 10
    assert not result.completed_on_time
    assert result.xp_earned == 25


def test_complete_twice_raises_and_keeps_xp(engine, user):
    session = engine.sessions.start(user.id)
    engine.clock.advance(minutes=25)
    engine.complete_session(user.id, session.id)
    with pytest.raises(AlreadyCompleted):
        engine.complete_session(user.id, session.id)
    assert engine.users.require(user.id).xp == 25


def test_complete_missing_or_foreign_session(engine, user, other_user):
    with pytest.raises(SessionNotFound):
        engine.sessions.complete(user.id, "nope")
    theirs = engine.sessions.start(other_user.id)
    with pytest.raises(SessionNotFound):
        engine.sessions.complete(user.id, theirs.id)


def test_complete_end_before_start_rejected(engine, user):
    session = engine.sessions.start(user.id)
    with pytest.raises(ValidationError):
        engine.sessions.complete(user.id, session.id, end_time=session.start_time - timedelta(minutes=1))


def test_complete_rating_validation(engine, user):
    session = engine.sessions.start(user.id)
    with pytest.raises(ValidationError):
        engine.sessions.complete(user.id, session.id, rating=6)
    assert engine.sessions.active(user.id).id == session.id


def test_start_after_complete(engine, user):
    session = engine.sessions.start(user.id)
    engine.complete_session(user.id, session.id)
    assert engine.sessions.start(user.id).id != session.id


# ── Cancel ──


def test_cancel_then_start_again(engine, user):
    session = engine.sessions.start(user.id)
    cancelled = engine.sessions.cancel(user.id, session.id)
    assert cancelled.id == session.id
    assert engine.sessions.active(user.id) is None
    assert engine.users.require(user.id).xp == 0
    assert engine.sessions.start(user.id).id != session.id


def test_cancel_completed_session_fails(engine, user):
    session = engine.sessions.start(user.id)
    engine.complete_session(user.id, session.id)
    with pytest.raises(SessionNotFound):
        engine.sessions.cancel(user.id, session.id)
    assert engine.sessions.get(user.id, session.id).completed


def test_cancel_removes_distractions(engine, user):
    session = engine.sessions.start(user.id)
    engine.sessions.add_distraction(user.id, session.id, "phone", "buzz")
    engine.sessions.cancel(user.id, session.id)
    assert engine.distractions.list(user.id) == []


def test_cancel_keeps_session_when_distraction_delete_fails(engine, user, monkeypatch):
    session = engine.sessions.start(user.id)
    engine.sessions.add_distraction(user.id, session.id, "phone", "buzz")

    def down(*args, **kwargs):
        raise TransientStorageError("distractions unavailable")

    monkeypatch.setattr(engine.distractions.distractions, "delete_many", down)
    with pytest.raises(TransientStorageError):
        engine.sessions.cancel(user.id, session.id)
    assert engine.sessions.active(user.id).id == session.id
    assert len(engine.distractions.list(user.id, session_id=session.id)) == 1


def test_cancel_never_orphans_distractions(engine, user, monkeypatch):
    session = engine.sessions.start(user.id)
    engine.sessions.add_distraction(user.id, session.id, "phone", "buzz")

    def down(*args, **kwargs):
        raise TransientStorageError("sessions unavailable")

    monkeypatch.setattr(engine.sessions.sessions, "delete_one", down)
    with pytest.raises(TransientStorageError):
        engine.sessions.cancel(user.id, session.id)
    monkeypatch.undo()

    assert engine.distractions.list(user.id) == []
    engine.sessions.cancel(user.id, session.id)
    assert engine.sessions.active(user.id) is None


def test_racing_complete_and_cancel(engine, user):
    session = engine.sessions.start(user.id)
    outcomes: list[str] = []
    barrier = threading.Barrier(2)

    def complete():
        barrier.wait()
        try:
            engine.complete_session(user.id, session.id)
            outcomes.append("completed")
        except FocusFlowError:
            outcomes.append("failed")

    def cancel():
        barrier.wait()
        try:
            engine.sessions.cancel(user.id, session.id)
            outcomes.append("cancelled")
        except FocusFlowError:
            outcomes.append("failed")

    threads = [threading.Thread(target=complete), threading.Thread(target=cancel)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert outcomes.count("failed") == 1
    xp = engine.users.require(user.id).xp
    assert xp == (25 if "completed" in outcomes else 0)


# ── Pause / resume ──


def test_pause_and_resume_accumulate(engine, user):
    session = engine.sessions.start(user.id)
    paused = engine.sessions.pause(user.id, session.id)
    assert paused.paused
    with pytest.raises(AlreadyInState):
        engine.sessions.pause(user.id, session.id)

    engine.clock.advance(minutes=2)
    resumed = engine.sessions.resume(user.id, session.id)
    assert not resumed.paused
    assert resumed.paused_seconds == 120
    with pytest.raises(AlreadyInState):
        engine.sessions.resume(user.id, session.id)


def test_complete_while_paused(engine, user):
    session = engine.sessions.start(user.id)
    engine.clock.advance(minutes=20)
    engine.sessions.pause(user.id, session.id)
    engine.clock.advance(minutes=5)
    result = engine.complete_session(user.id, session.id)
    assert not result.session.paused
    assert result.session.paused_seconds == 300
    # duration stays wall clock
    assert result.actual_duration == 25


# ── Distractions and history ──


def test_add_distraction_requires_active_session(engine, user):
    session = engine.sessions.start(user.id)
    d = engine.sessions.add_distraction(user.id, session.id, "email", "inbox ping", severity=2)
    assert d.session_id == session.id
    assert d.description == "inbox ping"
    assert d.severity == 2

    engine.complete_session(user.id, session.id)
    with pytest.raises(SessionNotFound):
        engine.sessions.add_distraction(user.id, session.id, "phone")


def test_distraction_note_length(engine, user):
    session = engine.sessions.start(user.id)
    engine.sessions.add_distraction(user.id, session.id, "phone", "x" * 200)
    with pytest.raises(ValidationError):
        engine.sessions.add_distraction(user.id, session.id, "phone", "x" * 201)
    assert len(engine.distractions.list(user.id, session_id=session.id)) == 1


def test_active_with_distractions(engine, user):
    assert engine.sessions.active_with_distractions(user.id) == (None, [])
    session = engine.sessions.start(user.id)
    engine.sessions.add_distraction(user.id, session.id, "phone")
    engine.clock.advance(seconds=30)
    engine.sessions.add_distraction(user.id, session.id, "noise")
    active, distractions = engine.sessions.active_with_distractions(user.id)
    assert active.id == session.id
    assert [d.type for d in distractions] == ["phone", "noise"]


def test_history_newest_first(engine, user):
    first = engine.sessions.start(user.id)
    engine.complete_session(user.id, first.id)
    engine.clock.advance(hours=1)
    second = engine.sessions.start(user.id, "short_break")
    history = engine.sessions.history(user.id)
    assert [s.id for s in history] == [second.id, first.id]
    assert engine.sessions.history(user.id, start="2026-03-12") == []
    with pytest.raises(ValidationError):
        engine.sessions.history(user.id, limit=0)
    with pytest.raises(ValidationError):
        engine.sessions.history(user.id, start="bad")
