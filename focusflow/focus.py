"""Focus session state machine for FocusFlow.

Implements Pomodoro-style work and break intervals::

    NONE -> ACTIVE -> ACTIVE (paused toggled)
                   -> COMPLETED   (terminal, immutable history)
                   -> CANCELLED   (terminal, record deleted)

A user has at most one non-completed session. Every transition for a user
runs under that user's session lock, so racing complete/cancel calls resolve
as "first wins, second sees the terminal state and fails".
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from focusflow.clock import Clock
from focusflow.config import Settings
from focusflow.distractions import DistractionLog
from focusflow.errors import (
    ActiveSessionExists,
    AlreadyCompleted,
    AlreadyInState,
    SessionNotFound,
    ValidationError,
)
from focusflow.models import SESSION_TYPES, Distraction, FocusSession, SessionCompletion
from focusflow.store import DocumentStore
from focusflow.timewindow import local_day, parse_day, to_iso
from focusflow.users import UserRepository

logger = logging.getLogger(__name__)

COLLECTION = "sessions"
LONG_BREAK_MINUTES = 15
ON_TIME_RATIO = 0.9
NOTE_MAX_LENGTH = 200


class FocusSessions:
    def __init__(self, store: DocumentStore, clock: Clock, settings: Settings):
        self.store = store
        self.clock = clock
        self.settings = settings
        self.sessions = store.collection(COLLECTION)
        self.users = UserRepository(store, settings.max_daily_task_limit)
        self.distractions = DistractionLog(store, clock)

    # ── Queries ──

    def get(self, user_id: str, session_id: str) -> FocusSession:
        doc = self.sessions.find_one({"id": session_id, "userId": user_id})
        if doc is None:
            raise SessionNotFound(session_id)
        return FocusSession.from_dict(doc)

    def active(self, user_id: str) -> FocusSession | None:
        """The user's in-flight session, or None."""
        doc = self.sessions.find_one({"userId": user_id, "completed": False})
        return FocusSession.from_dict(doc) if doc else None

    def active_with_distractions(self, user_id: str) -> tuple[FocusSession | None, list[Distraction]]:
        session = self.active(user_id)
        if session is None:
            return None, []
        return session, self.distractions.list(user_id, session_id=session.id, oldest_first=True)

    def history(
        self,
        user_id: str,
        start: date | str | None = None,
        end: date | str | None = None,
        limit: int = 30,
    ) -> list[FocusSession]:
        """Sessions newest first, optionally bounded by an inclusive session-day range."""
        if not 1 <= limit <= 100:
            raise ValidationError("limit must be between 1 and 100")
        flt: dict[str, Any] = {"userId": user_id}
        day_range: dict[str, str] = {}
        try:
            if start is not None:
                day_range["$gte"] = parse_day(start).isoformat()
            if end is not None:
                day_range["$lte"] = parse_day(end).isoformat()
        except (TypeError, ValueError, AttributeError):
            raise ValidationError(f"Invalid date range: {start!r} to {end!r}")
        if day_range:
            flt["sessionDate"] = day_range
        docs = self.sessions.find(flt, sort=[("startTime", -1)], limit=limit)
        return [FocusSession.from_dict(d) for d in docs]

    # ── Transitions ──

    def start(self, user_id: str, session_type: str = "work", duration: int | None = None) -> FocusSession:
        """Open a new session. Raises ActiveSessionExists if one is in flight."""
        if session_type not in SESSION_TYPES:
            raise ValidationError(f"Session type must be one of {', '.join(SESSION_TYPES)}")
        user = self.users.require(user_id)
        if duration is None:
            duration = {
                "work": user.preferences.pomodoro_duration,
                "short_break": user.preferences.break_duration,
                "long_break": LONG_BREAK_MINUTES,
            }[session_type]
        if not isinstance(duration, int) or isinstance(duration, bool) or not 1 <= duration <= 120:
            raise ValidationError("Duration must be between 1 and 120 minutes")

        with self.store.lock(COLLECTION, user_id):
            existing = self.sessions.find_one({"userId": user_id, "completed": False})
            if existing is not None:
                raise ActiveSessionExists(existing["id"])

            now = self.clock.now()
            session = FocusSession(
                user_id=user_id,
                session_type=session_type,
                duration=duration,
                start_time=now,
                session_date=local_day(now, self.settings.tz),
            )
            doc = self.sessions.insert(session.to_dict())

            active = self.sessions.find({"userId": user_id, "completed": False}, sort=[("startTime", 1), ("id", 1)])
            if len(active) > 1 and active[0]["id"] != doc["id"]:
                self.sessions.delete(doc["id"])
                raise ActiveSessionExists(active[0]["id"])

        logger.info("Started %s session %s for user %s (%d min)", session_type, doc["id"], user_id, duration)
        return FocusSession.from_dict(doc)

    def pause(self, user_id: str, session_id: str) -> FocusSession:
        with self.store.lock(COLLECTION, user_id):
            session = self._require_active(user_id, session_id)
            if session.paused:
                raise AlreadyInState(f"Session is already paused: {session_id}")
            doc = self.sessions.update(session_id, {"paused": True, "pausedAt": to_iso(self.clock.now())})
        logger.info("Paused session %s for user %s", session_id, user_id)
        return FocusSession.from_dict(doc)

    def resume(self, user_id: str, session_id: str) -> FocusSession:
        with self.store.lock(COLLECTION, user_id):
            session = self._require_active(user_id, session_id)
            if not session.paused:
                raise AlreadyInState(f"Session is not paused: {session_id}")
            paused_seconds = session.paused_seconds + self._paused_for(session, self.clock.now())
            doc = self.sessions.update(
                session_id,
                {"paused": False, "pausedAt": None, "pausedSeconds": paused_seconds},
            )
        logger.info("Resumed session %s for user %s", session_id, user_id)
        return FocusSession.from_dict(doc)

    def add_distraction(self, user_id: str, session_id: str, type: str, note: str = "", **fields: Any) -> Distraction:
        """Log a distraction against the user's in-flight session."""
        if len(note or "") > NOTE_MAX_LENGTH:
            raise ValidationError(f"Note cannot exceed {NOTE_MAX_LENGTH} characters")
        with self.store.lock(COLLECTION, user_id):
            self._require_active(user_id, session_id)
            return self.distractions.log(user_id, session_id, type, description=note, **fields)

    def complete(
        self,
        user_id: str,
        session_id: str,
        end_time: datetime | None = None,
        notes: str | None = None,
        rating: int | None = None,
    ) -> SessionCompletion:
        """Finish a session and fix its XP. A second call raises AlreadyCompleted."""
        if rating is not None and (not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5):
            raise ValidationError("Rating must be between 1 and 5")
        if notes is not None and len(notes) > 500:
            raise ValidationError("Notes cannot exceed 500 characters")

        with self.store.lock(COLLECTION, user_id):
            session = self.get(user_id, session_id)
            if session.completed:
                raise AlreadyCompleted(f"Session is already completed: {session_id}")

            end = end_time or self.clock.now()
            if end < session.start_time:
                raise ValidationError("End time cannot be before the session start")

            patch: dict[str, Any] = {
                "completed": True,
                "endTime": to_iso(end),
                "xpEarned": self.xp_for(session.session_type),
                "paused": False,
                "pausedAt": None,
            }
            if session.paused:
                patch["pausedSeconds"] = session.paused_seconds + self._paused_for(session, end)
            if notes:
                patch["notes"] = notes
            if rating:
                patch["rating"] = rating

            doc = self.sessions.update_one({"id": session_id, "userId": user_id, "completed": False}, patch)
            if doc is None:
                raise AlreadyCompleted(f"Session is already completed: {session_id}")

        done = FocusSession.from_dict(doc)
        logger.info(
            "Completed session %s for user %s: %d/%d min, %d XP",
            session_id, user_id, done.actual_duration, done.duration, done.xp_earned,
        )
        return SessionCompletion(
            session=done,
            xp_earned=done.xp_earned,
            actual_duration=done.actual_duration,
            completed_on_time=done.completed_on_time,
        )

    def reopen(self, user_id: str, previous: FocusSession) -> None:
        """Undo a completion whose XP grant failed, restoring the prior record."""
        with self.store.lock(COLLECTION, user_id):
            self.sessions.update(previous.id, previous.to_dict())
        logger.warning("Reopened session %s for user %s after failed XP grant", previous.id, user_id)

    def cancel(self, user_id: str, session_id: str) -> FocusSession:
        """Delete an in-flight session and its distractions. No XP is awarded."""
        with self.store.lock(COLLECTION, user_id):
            self._require_active(user_id, session_id)
            # children first: a failed session delete must not leave orphans
            removed = self.distractions.delete_for_session(user_id, session_id)
            doc = self.sessions.delete_one({"id": session_id, "userId": user_id, "completed": False})
            if doc is None:
                raise SessionNotFound(session_id, message=f"Active session not found: {session_id}")
        logger.info("Cancelled session %s for user %s (%d distractions removed)", session_id, user_id, removed)
        return FocusSession.from_dict(doc)

    # ── Internals ──

    def xp_for(self, session_type: str) -> int:
        if session_type == "work":
            return self.settings.xp.work_session
        return self.settings.xp.break_session

    def _require_active(self, user_id: str, session_id: str) -> FocusSession:
        doc = self.sessions.find_one({"id": session_id, "userId": user_id, "completed": False})
        if doc is None:
            raise SessionNotFound(session_id, message=f"Active session not found: {session_id}")
        return FocusSession.from_dict(doc)

    @staticmethod
    def _paused_for(session: FocusSession, until: datetime) -> int:
        if session.paused_at is None:
            return 0
        return max(0, int((until - session.paused_at).total_seconds()))
