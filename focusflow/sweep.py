"""Daily reward sweep: runs the reward checks for every active user.

Scheduled with APScheduler as a cron job (00:00 UTC by default). One
user's failure is logged and counted and never stops the others. Runs do
not overlap within a process; a manual trigger while the scheduled run is
in flight waits for it, and the rerun is a no-op thanks to the watermarks.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from focusflow.clock import Clock
from focusflow.config import SweepSettings
from focusflow.errors import FocusFlowError
from focusflow.models import SweepFailure, SweepSummary
from focusflow.rewards import RewardEngine
from focusflow.users import UserRepository

logger = logging.getLogger(__name__)

JOB_ID = "daily-rewards"
JOB_NAME = "Daily Rewards Processing"


class DailyRewardSweep:
    def __init__(
        self,
        rewards: RewardEngine,
        users: UserRepository,
        settings: SweepSettings | None = None,
        clock: Clock | None = None,
        scheduler: Any = None,
    ):
        self.rewards = rewards
        self.users = users
        self.settings = settings or SweepSettings()
        self.clock = clock or rewards.clock
        self.scheduler = scheduler
        self.last_run: SweepSummary | None = None
        self._run_lock = threading.Lock()

    # ── Running ──

    def run_once(self) -> SweepSummary:
        """Process every active user once and return the tallies."""
        with self._run_lock:
            summary = SweepSummary(started_at=self.clock.now())
            users = self.users.list_active()
            logger.info("Processing daily rewards for %d users", len(users))

            for user in users:
                summary.processed += 1
                try:
                    result = self.rewards.process_daily_rewards(user.id)
                except FocusFlowError as e:
                    logger.error("Daily rewards failed for user %s: %s", user.id, e)
                    summary.failed += 1
                    summary.failures.append(SweepFailure(user_id=user.id, error=str(e), code=e.code))
                    continue
                except Exception as e:
                    logger.exception("Unexpected error processing daily rewards for user %s", user.id)
                    summary.failed += 1
                    summary.failures.append(SweepFailure(user_id=user.id, error=str(e)))
                    continue
                summary.successful += 1
                summary.total_reward += result.total_reward

            summary.finished_at = self.clock.now()
            self.last_run = summary

        logger.info(
            "Daily rewards processing completed: %d processed, %d successful, %d failed",
            summary.processed, summary.successful, summary.failed,
        )
        return summary

    def trigger(self) -> SweepSummary:
        """Run the sweep now, outside the schedule."""
        logger.info("Manually triggering daily rewards processing")
        return self.run_once()

    def _scheduled_run(self) -> None:
        try:
            self.run_once()
        except Exception:
            logger.exception("Scheduled daily rewards run failed")

    # ── Scheduling ──

    def start(self) -> None:
        """Register the cron job and start the scheduler if it is not running."""
        if not self.settings.enabled:
            logger.info("Daily rewards sweep disabled; not scheduling")
            return
        tz = ZoneInfo(self.settings.timezone)
        if self.scheduler is None:
            self.scheduler = BackgroundScheduler(timezone=tz)
        self.scheduler.add_job(
            self._scheduled_run,
            CronTrigger(hour=self.settings.hour, minute=self.settings.minute, timezone=tz),
            id=JOB_ID,
            name=JOB_NAME,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(
            "Daily rewards sweep scheduled at %02d:%02d %s",
            self.settings.hour, self.settings.minute, self.settings.timezone,
        )

    def shutdown(self) -> None:
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Daily rewards scheduler stopped")

    def status(self) -> dict[str, Any]:
        next_run: datetime | None = None
        if self.scheduler is not None:
            job = self.scheduler.get_job(JOB_ID)
            if job and job.next_run_time:
                next_run = job.next_run_time
        return {
            "initialized": self.scheduler is not None,
            "running": bool(self.scheduler is not None and self.scheduler.running),
            "jobs": [
                {
                    "id": JOB_ID,
                    "name": JOB_NAME,
                    "schedule": f"{self.settings.minute} {self.settings.hour} * * *",
                    "timezone": self.settings.timezone,
                    "enabled": self.settings.enabled,
                    "nextRunTime": next_run.isoformat() if next_run else None,
                }
            ],
            "lastRun": self.last_run.to_dict() if self.last_run else None,
        }
