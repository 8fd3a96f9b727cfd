"""Streak and weekly-goal rewards.

Each reward stream keeps a watermark on the user record: the highest
milestone (streak days) or tier reward (weekly goal) already paid. A check
pays at most the lowest milestone that is reached and above the watermark,
then raises the watermark. The watermark update and the XP grant are a
single user-document write made under the user lock, so repeated or
overlapping checks never pay the same milestone twice.
"""

from __future__ import annotations

import logging
from datetime import date

from focusflow.clock import Clock
from focusflow.config import Settings, WeeklyGoal
from focusflow.models import (
    DailyRewardResult,
    StreakRewardResult,
    UserProgress,
    WeeklyRewardResult,
)
from focusflow.progression import add_xp, level_progress, xp_for_next_level
from focusflow.store import DocumentStore
from focusflow.timewindow import (
    consecutive_day_streak,
    local_day,
    parse_timestamp,
    to_iso,
    week_bounds,
    week_start,
)
from focusflow.users import COLLECTION as USERS, UserRepository

logger = logging.getLogger(__name__)

TASKS = "tasks"
SESSIONS = "sessions"


class RewardEngine:
    def __init__(self, store: DocumentStore, clock: Clock, settings: Settings):
        self.store = store
        self.clock = clock
        self.settings = settings
        self.users = UserRepository(store, settings.max_daily_task_limit)
        self.tasks = store.collection(TASKS)
        self.sessions = store.collection(SESSIONS)

    # ── Measurements ──

    def today(self) -> date:
        return local_day(self.clock.now(), self.settings.tz)

    def current_streak(self, user_id: str) -> int:
        """Consecutive days, ending today, with at least one completed task."""
        tz = self.settings.tz
        docs = self.tasks.find({"userId": user_id, "completed": True, "completedAt": {"$ne": None}})
        days = {local_day(parse_timestamp(d["completedAt"]), tz) for d in docs}
        return consecutive_day_streak(days, self.today())

    def weekly_counts(self, user_id: str) -> tuple[int, int]:
        """(completed tasks, completed sessions) in the current Sunday-aligned week."""
        start, end = week_bounds(self.today(), self.settings.tz)
        window = {"$gte": to_iso(start), "$lt": to_iso(end)}
        tasks = self.tasks.count({"userId": user_id, "completed": True, "completedAt": window})
        sessions = self.sessions.count({"userId": user_id, "completed": True, "endTime": window})
        return tasks, sessions

    # ── Reward checks ──

    def check_streak_rewards(self, user_id: str) -> StreakRewardResult:
        rewards = self.settings.rewards
        with self.store.lock(USERS, user_id):
            user = self.users.require(user_id)
            streak = self.current_streak(user_id)

            milestone = next(
                (m for m in rewards.streak_milestones
                 if streak >= m and user.last_streak_reward_milestone < m),
                None,
            )
            if milestone is None:
                return StreakRewardResult(current_streak=streak)

            user.last_streak_reward_milestone = milestone
            xp_result = add_xp(user, rewards.streak_reward, self.settings.xp)
            self.users.save(user)

        logger.info("User %s reached %d-day streak milestone: +%d XP", user_id, milestone, rewards.streak_reward)
        return StreakRewardResult(
            current_streak=streak,
            streak_reward=rewards.streak_reward,
            milestone=milestone,
            xp_result=xp_result,
        )

    def check_weekly_goal_rewards(self, user_id: str) -> WeeklyRewardResult:
        rewards = self.settings.rewards
        this_week = week_start(self.today())
        with self.store.lock(USERS, user_id):
            user = self.users.require(user_id)
            watermark = user.last_weekly_reward_tier
            if rewards.reset_weekly_watermark and user.last_weekly_reward_week != this_week:
                watermark = 0

            tasks_done, sessions_done = self.weekly_counts(user_id)
            goal = next(
                (g for g in rewards.weekly_goals
                 if tasks_done >= g.tasks and sessions_done >= g.sessions and watermark < g.reward),
                None,
            )
            if goal is None:
                return WeeklyRewardResult(completed_tasks=tasks_done, completed_sessions=sessions_done)

            user.last_weekly_reward_tier = goal.reward
            user.last_weekly_reward_week = this_week
            xp_result = add_xp(user, goal.reward, self.settings.xp)
            self.users.save(user)

        logger.info("User %s reached %s weekly goal: +%d XP", user_id, goal.name, goal.reward)
        return WeeklyRewardResult(
            completed_tasks=tasks_done,
            completed_sessions=sessions_done,
            weekly_reward=goal.reward,
            tier=goal.name,
            xp_result=xp_result,
        )

    def process_daily_rewards(self, user_id: str) -> DailyRewardResult:
        """Run the streak check and then the weekly-goal check for one user."""
        streak = self.check_streak_rewards(user_id)
        weekly = self.check_weekly_goal_rewards(user_id)
        return DailyRewardResult(user_id=user_id, streak=streak, weekly=weekly, timestamp=self.clock.now())

    # ── Progress ──

    def get_user_progress(self, user_id: str) -> UserProgress:
        rewards = self.settings.rewards
        user = self.users.require(user_id)
        streak = self.current_streak(user_id)
        tasks_done, sessions_done = self.weekly_counts(user_id)

        milestones = rewards.streak_milestones
        next_milestone = next((m for m in milestones if streak < m), milestones[-1])
        goal = _current_goal(rewards.weekly_goals, tasks_done, sessions_done)
        task_pct = min(100.0, tasks_done / goal.tasks * 100) if goal.tasks else 100.0
        session_pct = min(100.0, sessions_done / goal.sessions * 100) if goal.sessions else 100.0
        xp_per_level = self.settings.xp.xp_per_level

        return UserProgress(
            current_streak=streak,
            next_streak_milestone=next_milestone,
            streak_progress=min(100.0, streak / next_milestone * 100),
            completed_tasks=tasks_done,
            completed_sessions=sessions_done,
            current_goal=goal.name,
            weekly_progress=(task_pct + session_pct) / 2,
            last_streak_reward_milestone=user.last_streak_reward_milestone,
            last_weekly_reward_tier=user.last_weekly_reward_tier,
            level=user.level,
            xp=user.xp,
            xp_for_next_level=xp_for_next_level(user.xp, xp_per_level),
            level_progress=level_progress(user.xp, xp_per_level),
        )


def _current_goal(goals: tuple[WeeklyGoal, ...], tasks_done: int, sessions_done: int) -> WeeklyGoal:
    """First goal not yet met, or the top goal once all are met."""
    for goal in goals:
        if tasks_done < goal.tasks or sessions_done < goal.sessions:
            return goal
    return goals[-1]
