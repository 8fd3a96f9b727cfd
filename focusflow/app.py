"""FocusFlow application object: one place that wires every component."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from focusflow.clock import Clock
from focusflow.config import Settings, load_settings
from focusflow.focus import COLLECTION as SESSIONS, FocusSessions
from focusflow.log import setup_logging
from focusflow.models import SessionCompletion, TaskCompletion
from focusflow.progression import ProgressionEngine
from focusflow.rewards import RewardEngine
from focusflow.store import DocumentStore, JsonFileStore, MemoryStore
from focusflow.sweep import DailyRewardSweep
from focusflow.tasks import TaskLedger
from focusflow.users import UserRepository
from focusflow.workspace import log_path, workspace_root

logger = logging.getLogger(__name__)


class FocusFlow:
    def __init__(
        self,
        store: DocumentStore | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ):
        self.store = store if store is not None else MemoryStore()
        self.clock = clock or Clock()
        self.settings = settings or Settings()

        self.users = UserRepository(self.store, self.settings.max_daily_task_limit)
        self.progression = ProgressionEngine(self.store, self.settings.xp)
        self.tasks = TaskLedger(self.store, self.clock, self.settings)
        self.sessions = FocusSessions(self.store, self.clock, self.settings)
        self.distractions = self.sessions.distractions
        self.rewards = RewardEngine(self.store, self.clock, self.settings)
        self.sweep = DailyRewardSweep(self.rewards, self.users, self.settings.sweep, self.clock)

    @classmethod
    def from_workspace(cls, root: Path | None = None) -> FocusFlow:
        """Build an app over the JSON store in ``root`` (or $FOCUSFLOW_ROOT)."""
        root = root or workspace_root()
        settings = load_settings(root)
        setup_logging(settings.log.level, settings.log.file or log_path(root))
        return cls(JsonFileStore(root), Clock(), settings)

    def complete_task(self, user_id: str, task_id: str, actual_time: int | None = None) -> TaskCompletion:
        """Complete a task and award its XP. A failed award undoes the completion."""
        previous = self.tasks.get(user_id, task_id)
        completion = self.tasks.complete(user_id, task_id, actual_time)
        try:
            completion.xp_result = self.progression.award(user_id, completion.xp_awarded, reason="task")
        except Exception:
            self._undo(self.tasks.revert_completion, previous)
            raise
        return completion

    def complete_session(
        self,
        user_id: str,
        session_id: str,
        end_time: datetime | None = None,
        notes: str | None = None,
        rating: int | None = None,
    ) -> SessionCompletion:
        """Complete a session and award its XP inside the user's session lock."""
        with self.store.lock(SESSIONS, user_id):
            previous = self.sessions.get(user_id, session_id)
            completion = self.sessions.complete(user_id, session_id, end_time, notes, rating)
            try:
                completion.xp_result = self.progression.award(
                    user_id, completion.xp_earned, reason=f"{previous.session_type} session",
                )
            except Exception:
                self._undo(self.sessions.reopen, user_id, previous)
                raise
        return completion

    def _undo(self, rollback, *args) -> None:
        """Run a compensating write. Its own failure is logged, never raised over the original error."""
        try:
            rollback(*args)
        except Exception:
            logger.exception("Rollback %s failed; record left completed without XP", rollback.__name__)

    def start(self) -> None:
        self.sweep.start()

    def shutdown(self) -> None:
        self.sweep.shutdown()
