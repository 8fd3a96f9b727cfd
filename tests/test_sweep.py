"""Tests for focusflow/sweep.py: batch processing and scheduling."""

from datetime import date
from unittest.mock import MagicMock

from apscheduler.triggers.cron import CronTrigger

from focusflow.config import SweepSettings
from focusflow.errors import TransientStorageError
from focusflow.sweep import JOB_ID, DailyRewardSweep


def _complete_today(engine, user_id, n):
    for i in range(n):
        task = engine.tasks.create(user_id, date(2026, 3, 11), f"Task {i}", limit=10)
        engine.complete_task(user_id, task.id)


def test_run_once_processes_active_users(engine, user, other_user):
    engine.users.create("Dormant", user_id="u3", is_active=False)
    _complete_today(engine, user.id, 5)
    for _ in range(3):
        s = engine.sessions.start(user.id)
        engine.complete_session(user.id, s.id)

    summary = engine.sweep.run_once()
    assert summary.processed == 2
    assert summary.successful == 2
    assert summary.failed == 0
    assert summary.total_reward == 50
    assert summary.started_at == engine.clock.now()
    assert engine.users.require(user.id).last_weekly_reward_tier == 50


def test_run_once_is_idempotent(engine, user):
    _complete_today(engine, user.id, 5)
    for _ in range(3):
        s = engine.sessions.start(user.id)
        engine.complete_session(user.id, s.id)
    assert engine.sweep.run_once().total_reward == 50
    xp = engine.users.require(user.id).xp
    assert engine.sweep.run_once().total_reward == 0
    assert engine.users.require(user.id).xp == xp


def test_failure_isolated_per_user(engine, user, other_user, monkeypatch):
    real = engine.rewards.process_daily_rewards

    def flaky(user_id):
        if user_id == other_user.id:
            raise TransientStorageError("disk went away")
        return real(user_id)

    monkeypatch.setattr(engine.rewards, "process_daily_rewards", flaky)
    summary = engine.sweep.run_once()
    assert summary.processed == 2
    assert summary.successful == 1
    assert summary.failed == 1
    assert summary.failures[0].user_id == other_user.id
    assert summary.failures[0].code == "storage_unavailable"


def test_unexpected_failure_recorded(engine, user, monkeypatch):
    def boom(user_id):
        raise RuntimeError("bug")

    monkeypatch.setattr(engine.rewards, "process_daily_rewards", boom)
    summary = engine.sweep.run_once()
    assert summary.failed == 1
    assert summary.failures[0].code == "unexpected"
    assert summary.to_dict()["failures"][0]["error"] == "bug"


def test_trigger_records_last_run(engine, user):
    assert engine.sweep.status()["lastRun"] is None
    summary = engine.sweep.trigger()
    assert engine.sweep.status()["lastRun"] == summary.to_dict()


def test_start_registers_cron_job(engine):
    scheduler = MagicMock()
    scheduler.running = False
    sweep = DailyRewardSweep(engine.rewards, engine.users, SweepSettings(hour=0, minute=0), scheduler=scheduler)
    sweep.start()

    scheduler.add_job.assert_called_once()
    args, kwargs = scheduler.add_job.call_args
    assert args[0] == sweep._scheduled_run
    assert isinstance(args[1], CronTrigger)
    assert kwargs["id"] == JOB_ID
    assert kwargs["replace_existing"] is True
    scheduler.start.assert_called_once()


def test_start_disabled_does_nothing(engine):
    scheduler = MagicMock()
    sweep = DailyRewardSweep(engine.rewards, engine.users, SweepSettings(enabled=False), scheduler=scheduler)
    sweep.start()
    scheduler.add_job.assert_not_called()


def test_status_reports_schedule(engine):
    scheduler = MagicMock()
    scheduler.running = True
    scheduler.get_job.return_value = None
    sweep = DailyRewardSweep(engine.rewards, engine.users, SweepSettings(hour=0, minute=5), scheduler=scheduler)
    status = sweep.status()
    assert status["initialized"] is True
    assert status["running"] is True
    assert status["jobs"][0]["schedule"] == "5 0 * * *"
    assert status["jobs"][0]["nextRunTime"] is None


def test_scheduled_run_logs_instead_of_raising(engine, monkeypatch):
    monkeypatch.setattr(engine.users, "list_active", MagicMock(side_effect=TransientStorageError("down")))
    engine.sweep._scheduled_run()
    assert engine.sweep.last_run is None
