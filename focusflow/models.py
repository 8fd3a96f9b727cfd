"""Typed dataclasses for the FocusFlow data model.

All models use from_dict/to_dict for storage serialization.
camelCase in documents is mapped to snake_case in Python.
Unknown keys are ignored; missing keys use defaults.
Timestamps are stored as UTC ISO-8601 strings, calendar days as YYYY-MM-DD.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from focusflow.timewindow import parse_day, parse_timestamp, to_iso


SESSION_TYPES = ("work", "short_break", "long_break")
PRIORITIES = ("low", "medium", "high")
DISTRACTION_TYPES = ("phone", "social_media", "thoughts", "email", "noise", "people", "other")
RESOLUTION_METHODS = ("ignored", "addressed", "postponed", "delegated", "blocked")
DISTRACTION_CONTEXTS = ("home", "office", "cafe", "library", "other")
DISTRACTION_SOURCES = ("mobile", "desktop", "tablet", "external", "internal")

DISTRACTION_CATEGORIES = {
    "phone": "Digital",
    "social_media": "Digital",
    "email": "Digital",
    "thoughts": "Mental",
    "noise": "Environmental",
    "people": "Social",
    "other": "Other",
}


def _day_str(d: date | None) -> str | None:
    return d.isoformat() if d else None


# ── User ──────────────────────────────────────────────────────


@dataclass
class Preferences:
    pomodoro_duration: int = 25
    break_duration: int = 5
    daily_task_limit: int | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Preferences:
        if not d or not isinstance(d, dict):
            return cls()
        limit = d.get("dailyTaskLimit")
        return cls(
            pomodoro_duration=int(d.get("pomodoroDuration", 25)),
            break_duration=int(d.get("breakDuration", 5)),
            daily_task_limit=int(limit) if limit is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "pomodoroDuration": self.pomodoro_duration,
            "breakDuration": self.break_duration,
        }
        if self.daily_task_limit is not None:
            d["dailyTaskLimit"] = self.daily_task_limit
        return d


@dataclass
class User:
    id: str = ""
    name: str = ""
    xp: int = 0
    level: int = 1
    last_streak_reward_milestone: int = 0
    last_weekly_reward_tier: int = 0
    last_weekly_reward_week: date | None = None
    is_active: bool = True
    preferences: Preferences = field(default_factory=Preferences)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> User:
        if not d or not isinstance(d, dict):
            return cls()
        return cls(
            id=str(d.get("id", "")),
            name=str(d.get("name", "")),
            xp=int(d.get("xp", 0) or 0),
            level=int(d.get("level", 1) or 1),
            last_streak_reward_milestone=int(d.get("lastStreakRewardMilestone", 0) or 0),
            last_weekly_reward_tier=int(d.get("lastWeeklyRewardTier", 0) or 0),
            last_weekly_reward_week=parse_day(d.get("lastWeeklyRewardWeek")),
            is_active=bool(d.get("isActive", True)),
            preferences=Preferences.from_dict(d.get("preferences") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "xp": self.xp,
            "level": self.level,
            "lastStreakRewardMilestone": self.last_streak_reward_milestone,
            "lastWeeklyRewardTier": self.last_weekly_reward_tier,
            "lastWeeklyRewardWeek": _day_str(self.last_weekly_reward_week),
            "isActive": self.is_active,
            "preferences": self.preferences.to_dict(),
        }


# ── Tasks ─────────────────────────────────────────────────────


@dataclass
class Task:
    id: str = ""
    user_id: str = ""
    title: str = ""
    description: str = ""
    task_date: date | None = None
    completed: bool = False
    completed_at: datetime | None = None
    priority: str = "medium"
    category: str = ""
    order: int = 0
    estimated_time: int | None = None  # minutes
    actual_time: int = 0  # minutes
    tags: list[str] = field(default_factory=list)
    created_at: datetime | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Task:
        if not d or not isinstance(d, dict):
            return cls()
        est = d.get("estimatedTime")
        return cls(
            id=str(d.get("id", "")),
            user_id=str(d.get("userId", "")),
            title=str(d.get("title", "")),
            description=str(d.get("description", "") or ""),
            task_date=parse_day(d.get("taskDate")),
            completed=bool(d.get("completed", False)),
            completed_at=parse_timestamp(d.get("completedAt")),
            priority=str(d.get("priority", "medium")),
            category=str(d.get("category", "") or ""),
            order=int(d.get("order", 0)),
            estimated_time=int(est) if est is not None else None,
            actual_time=int(d.get("actualTime", 0) or 0),
            tags=[str(t) for t in (d.get("tags") or [])],
            created_at=parse_timestamp(d.get("createdAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "description": self.description,
            "taskDate": _day_str(self.task_date),
            "completed": self.completed,
            "completedAt": to_iso(self.completed_at),
            "priority": self.priority,
            "category": self.category,
            "order": self.order,
            "estimatedTime": self.estimated_time,
            "actualTime": self.actual_time,
            "tags": list(self.tags),
            "createdAt": to_iso(self.created_at),
        }


# ── Focus Session ─────────────────────────────────────────────


@dataclass
class FocusSession:
    id: str = ""
    user_id: str = ""
    session_type: str = "work"
    duration: int = 25  # planned minutes
    start_time: datetime | None = None
    session_date: date | None = None
    end_time: datetime | None = None
    completed: bool = False
    paused: bool = False
    paused_at: datetime | None = None
    paused_seconds: int = 0
    xp_earned: int = 0
    rating: int | None = None
    notes: str = ""

    @property
    def actual_duration(self) -> int | None:
        """Whole minutes between start and end, halves rounded up."""
        if self.end_time is None or self.start_time is None:
            return None
        seconds = (self.end_time - self.start_time).total_seconds()
        return math.floor(seconds / 60 + 0.5)

    @property
    def completed_on_time(self) -> bool:
        if not self.completed or self.actual_duration is None:
            return False
        return self.actual_duration >= self.duration * 0.9

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> FocusSession:
        if not d or not isinstance(d, dict):
            return cls()
        rating = d.get("rating")
        return cls(
            id=str(d.get("id", "")),
            user_id=str(d.get("userId", "")),
            session_type=str(d.get("sessionType", "work")),
            duration=int(d.get("duration", 25)),
            start_time=parse_timestamp(d.get("startTime")),
            session_date=parse_day(d.get("sessionDate")),
            end_time=parse_timestamp(d.get("endTime")),
            completed=bool(d.get("completed", False)),
            paused=bool(d.get("paused", False)),
            paused_at=parse_timestamp(d.get("pausedAt")),
            paused_seconds=int(d.get("pausedSeconds", 0) or 0),
            xp_earned=int(d.get("xpEarned", 0) or 0),
            rating=int(rating) if rating is not None else None,
            notes=str(d.get("notes", "") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "sessionType": self.session_type,
            "duration": self.duration,
            "startTime": to_iso(self.start_time),
            "sessionDate": _day_str(self.session_date),
            "endTime": to_iso(self.end_time),
            "completed": self.completed,
            "paused": self.paused,
            "pausedAt": to_iso(self.paused_at),
            "pausedSeconds": self.paused_seconds,
            "xpEarned": self.xp_earned,
            "rating": self.rating,
            "notes": self.notes,
        }


# ── Distraction ───────────────────────────────────────────────


@dataclass
class Distraction:
    id: str = ""
    user_id: str = ""
    session_id: str = ""
    type: str = "other"
    duration_seconds: int = 30
    timestamp: datetime | None = None
    description: str = ""
    severity: int = 3
    impact: int = 3
    resolved: bool = False
    resolution_method: str = "ignored"
    context: str = "other"
    source: str = "external"
    tags: list[str] = field(default_factory=list)

    @property
    def category(self) -> str:
        return DISTRACTION_CATEGORIES.get(self.type, "Other")

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Distraction:
        if not d or not isinstance(d, dict):
            return cls()
        return cls(
            id=str(d.get("id", "")),
            user_id=str(d.get("userId", "")),
            session_id=str(d.get("sessionId", "")),
            type=str(d.get("type", "other")),
            duration_seconds=int(d.get("durationSeconds", 30)),
            timestamp=parse_timestamp(d.get("timestamp")),
            description=str(d.get("description", "") or ""),
            severity=int(d.get("severity", 3)),
            impact=int(d.get("impact", 3)),
            resolved=bool(d.get("resolved", False)),
            resolution_method=str(d.get("resolutionMethod", "ignored")),
            context=str(d.get("context", "other")),
            source=str(d.get("source", "external")),
            tags=[str(t) for t in (d.get("tags") or [])],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "sessionId": self.session_id,
            "type": self.type,
            "category": self.category,
            "durationSeconds": self.duration_seconds,
            "timestamp": to_iso(self.timestamp),
            "description": self.description,
            "severity": self.severity,
            "impact": self.impact,
            "resolved": self.resolved,
            "resolutionMethod": self.resolution_method,
            "context": self.context,
            "source": self.source,
            "tags": list(self.tags),
        }


# ── Operation results ─────────────────────────────────────────


@dataclass
class XPResult:
    leveled_up: bool = False
    old_level: int = 1
    new_level: int = 1
    xp_gained: int = 0
    level_up_bonus: int = 0
    total_xp: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "leveledUp": self.leveled_up,
            "oldLevel": self.old_level,
            "newLevel": self.new_level,
            "xpGained": self.xp_gained,
            "levelUpBonus": self.level_up_bonus,
            "totalXP": self.total_xp,
        }


@dataclass
class TaskCompletion:
    task: Task
    xp_awarded: int
    xp_result: XPResult | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"task": self.task.to_dict(), "xpAwarded": self.xp_awarded}
        if self.xp_result is not None:
            d["xpResult"] = self.xp_result.to_dict()
        return d


@dataclass
class SessionCompletion:
    session: FocusSession
    xp_earned: int
    actual_duration: int
    completed_on_time: bool
    xp_result: XPResult | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "session": self.session.to_dict(),
            "xpEarned": self.xp_earned,
            "actualDuration": self.actual_duration,
            "completedOnTime": self.completed_on_time,
        }
        if self.xp_result is not None:
            d["xpResult"] = self.xp_result.to_dict()
        return d


@dataclass
class StreakRewardResult:
    current_streak: int = 0
    streak_reward: int = 0
    milestone: int | None = None
    xp_result: XPResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "currentStreak": self.current_streak,
            "streakReward": self.streak_reward,
            "milestone": self.milestone,
            "xpResult": self.xp_result.to_dict() if self.xp_result else None,
        }


@dataclass
class WeeklyRewardResult:
    completed_tasks: int = 0
    completed_sessions: int = 0
    weekly_reward: int = 0
    tier: str | None = None
    xp_result: XPResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "completedTasks": self.completed_tasks,
            "completedSessions": self.completed_sessions,
            "weeklyReward": self.weekly_reward,
            "tier": self.tier,
            "xpResult": self.xp_result.to_dict() if self.xp_result else None,
        }


@dataclass
class DailyRewardResult:
    user_id: str
    streak: StreakRewardResult
    weekly: WeeklyRewardResult
    timestamp: datetime | None = None

    @property
    def total_reward(self) -> int:
        return self.streak.streak_reward + self.weekly.weekly_reward

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "totalReward": self.total_reward,
            "streak": self.streak.to_dict(),
            "weekly": self.weekly.to_dict(),
            "timestamp": to_iso(self.timestamp),
        }


@dataclass
class UserProgress:
    current_streak: int = 0
    next_streak_milestone: int = 0
    streak_progress: float = 0.0
    completed_tasks: int = 0
    completed_sessions: int = 0
    current_goal: str = ""
    weekly_progress: float = 0.0
    last_streak_reward_milestone: int = 0
    last_weekly_reward_tier: int = 0
    level: int = 1
    xp: int = 0
    xp_for_next_level: int = 0
    level_progress: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "currentStreak": self.current_streak,
            "nextStreakMilestone": self.next_streak_milestone,
            "streakProgress": round(self.streak_progress, 1),
            "completedTasks": self.completed_tasks,
            "completedSessions": self.completed_sessions,
            "currentGoal": self.current_goal,
            "weeklyProgress": round(self.weekly_progress, 1),
            "lastStreakRewardMilestone": self.last_streak_reward_milestone,
            "lastWeeklyRewardTier": self.last_weekly_reward_tier,
            "level": self.level,
            "xp": self.xp,
            "xpForNextLevel": self.xp_for_next_level,
            "levelProgress": round(self.level_progress, 1),
        }


@dataclass
class SweepFailure:
    user_id: str
    error: str
    code: str = "unexpected"

    def to_dict(self) -> dict[str, Any]:
        return {"userId": self.user_id, "error": self.error, "code": self.code}


@dataclass
class SweepSummary:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    total_reward: int = 0
    failures: list[SweepFailure] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "totalReward": self.total_reward,
            "failures": [f.to_dict() for f in self.failures],
            "startedAt": to_iso(self.started_at),
            "finishedAt": to_iso(self.finished_at),
        }
