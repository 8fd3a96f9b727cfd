"""Settings for FocusFlow, loaded from ``config.yaml`` in the workspace.

Unknown keys are ignored; missing keys use defaults, so an absent file
yields the stock configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

from focusflow.fileio import read_yaml, write_yaml_atomic
from focusflow.workspace import config_path


DEFAULT_STREAK_MILESTONES = (3, 7, 14, 30, 60, 100)


@dataclass(frozen=True)
class WeeklyGoal:
    name: str
    tasks: int
    sessions: int
    reward: int

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> WeeklyGoal:
        return cls(
            name=str(d.get("name", "")),
            tasks=int(d.get("tasks", 0)),
            sessions=int(d.get("sessions", 0)),
            reward=int(d.get("reward", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "tasks": self.tasks, "sessions": self.sessions, "reward": self.reward}


DEFAULT_WEEKLY_GOALS = (
    WeeklyGoal("Basic", tasks=5, sessions=3, reward=50),
    WeeklyGoal("Advanced", tasks=10, sessions=7, reward=100),
    WeeklyGoal("Expert", tasks=15, sessions=12, reward=150),
)


@dataclass
class XPSettings:
    task: int = 10
    work_session: int = 25
    break_session: int = 5
    level_up_bonus: int = 100
    xp_per_level: int = 100

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> XPSettings:
        if not d or not isinstance(d, dict):
            return cls()
        return cls(
            task=int(d.get("task", 10)),
            work_session=int(d.get("work_session", 25)),
            break_session=int(d.get("break_session", 5)),
            level_up_bonus=int(d.get("level_up_bonus", 100)),
            xp_per_level=int(d.get("xp_per_level", 100)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task,
            "work_session": self.work_session,
            "break_session": self.break_session,
            "level_up_bonus": self.level_up_bonus,
            "xp_per_level": self.xp_per_level,
        }


@dataclass
class RewardSettings:
    streak_reward: int = 50
    streak_milestones: tuple[int, ...] = DEFAULT_STREAK_MILESTONES
    weekly_goals: tuple[WeeklyGoal, ...] = DEFAULT_WEEKLY_GOALS
    reset_weekly_watermark: bool = False

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> RewardSettings:
        if not d or not isinstance(d, dict):
            return cls()
        milestones = d.get("streak_milestones") or DEFAULT_STREAK_MILESTONES
        goals = d.get("weekly_goals")
        return cls(
            streak_reward=int(d.get("streak_reward", 50)),
            streak_milestones=tuple(sorted(int(m) for m in milestones)),
            weekly_goals=(
                tuple(sorted((WeeklyGoal.from_dict(g) for g in goals), key=lambda g: g.reward))
                if goals else DEFAULT_WEEKLY_GOALS
            ),
            reset_weekly_watermark=bool(d.get("reset_weekly_watermark", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "streak_reward": self.streak_reward,
            "streak_milestones": list(self.streak_milestones),
            "weekly_goals": [g.to_dict() for g in self.weekly_goals],
            "reset_weekly_watermark": self.reset_weekly_watermark,
        }


@dataclass
class SweepSettings:
    enabled: bool = True
    hour: int = 0
    minute: int = 0
    timezone: str = "UTC"

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SweepSettings:
        if not d or not isinstance(d, dict):
            return cls()
        return cls(
            enabled=bool(d.get("enabled", True)),
            hour=int(d.get("hour", 0)),
            minute=int(d.get("minute", 0)),
            timezone=str(d.get("timezone", "UTC")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "hour": self.hour, "minute": self.minute, "timezone": self.timezone}


@dataclass
class LogSettings:
    level: str = "INFO"
    file: str | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> LogSettings:
        if not d or not isinstance(d, dict):
            return cls()
        return cls(level=str(d.get("level", "INFO")).upper(), file=d.get("file"))

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"level": self.level}
        if self.file:
            d["file"] = self.file
        return d


@dataclass
class Settings:
    timezone: str = "UTC"
    daily_task_limit: int = 3
    max_daily_task_limit: int = 10
    xp: XPSettings = field(default_factory=XPSettings)
    rewards: RewardSettings = field(default_factory=RewardSettings)
    sweep: SweepSettings = field(default_factory=SweepSettings)
    log: LogSettings = field(default_factory=LogSettings)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Settings:
        if not d or not isinstance(d, dict):
            return cls()
        return cls(
            timezone=str(d.get("timezone", "UTC")),
            daily_task_limit=int(d.get("daily_task_limit", 3)),
            max_daily_task_limit=int(d.get("max_daily_task_limit", 10)),
            xp=XPSettings.from_dict(d.get("xp") or {}),
            rewards=RewardSettings.from_dict(d.get("rewards") or {}),
            sweep=SweepSettings.from_dict(d.get("sweep") or {}),
            log=LogSettings.from_dict(d.get("log") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timezone": self.timezone,
            "daily_task_limit": self.daily_task_limit,
            "max_daily_task_limit": self.max_daily_task_limit,
            "xp": self.xp.to_dict(),
            "rewards": self.rewards.to_dict(),
            "sweep": self.sweep.to_dict(),
            "log": self.log.to_dict(),
        }


def load_settings(root: Path | None = None) -> Settings:
    """Load settings from config.yaml; env FOCUSFLOW_LOG_LEVEL overrides the log level."""
    settings = Settings.from_dict(read_yaml(config_path(root)))
    level = os.environ.get("FOCUSFLOW_LOG_LEVEL")
    if level:
        settings.log.level = level.upper()
    return settings


def save_settings(settings: Settings, root: Path | None = None) -> None:
    write_yaml_atomic(config_path(root), settings.to_dict())
