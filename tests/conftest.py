"""Shared test fixtures for FocusFlow tests."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

import pytest
import yaml

from focusflow.app import FocusFlow
from focusflow.clock import FixedClock
from focusflow.config import Settings
from focusflow.models import User
from focusflow.store import MemoryStore

# Wednesday; the Sunday-aligned week starts 2026-03-08
NOW = datetime(2026, 3, 11, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def engine(store: MemoryStore, clock: FixedClock, settings: Settings) -> FocusFlow:
    return FocusFlow(store, clock, settings)


@pytest.fixture
def user(engine: FocusFlow) -> User:
    return engine.users.create("Alice", user_id="u1")


@pytest.fixture
def other_user(engine: FocusFlow) -> User:
    return engine.users.create("Bob", user_id="u2")


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo handlers installed by setup_logging so tests stay isolated."""
    yield
    logger = logging.getLogger("focusflow")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Create a temporary workspace with a config file."""
    root = tmp_path / "workspace"
    root.mkdir()
    config = {
        "timezone": "UTC",
        "daily_task_limit": 3,
        "sweep": {"hour": 0, "minute": 0, "timezone": "UTC"},
        "log": {"level": "DEBUG"},
    }
    (root / "config.yaml").write_text(yaml.dump(config, default_flow_style=False), encoding="utf-8")
    monkeypatch.setenv("FOCUSFLOW_ROOT", str(root))
    return root
