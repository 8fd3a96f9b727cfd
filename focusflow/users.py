"""User records: lookup, seeding, and the active-user listing used by the sweep."""

from __future__ import annotations

from typing import Any

from focusflow.errors import UserNotFound, ValidationError
from focusflow.models import Preferences, User
from focusflow.store import DocumentStore

COLLECTION = "users"


class UserRepository:
    def __init__(self, store: DocumentStore, max_daily_task_limit: int = 10):
        self.store = store
        self.users = store.collection(COLLECTION)
        self.max_daily_task_limit = max_daily_task_limit

    def create(
        self,
        name: str = "",
        user_id: str | None = None,
        preferences: dict[str, Any] | None = None,
        **fields: Any,
    ) -> User:
        """Insert a new user at level 1 with no XP and zeroed watermarks."""
        prefs = self._parse_preferences(preferences or {})
        user = User(id=user_id or "", name=name, preferences=prefs)
        for key, value in fields.items():
            if not hasattr(user, key):
                raise ValidationError(f"Unknown user field: {key}")
            setattr(user, key, value)
        doc = self.users.insert(user.to_dict())
        return User.from_dict(doc)

    def get(self, user_id: str) -> User | None:
        doc = self.users.get(user_id)
        return User.from_dict(doc) if doc else None

    def require(self, user_id: str) -> User:
        user = self.get(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    def save(self, user: User) -> User:
        doc = self.users.update(user.id, user.to_dict())
        if doc is None:
            raise UserNotFound(user.id)
        return User.from_dict(doc)

    def list_active(self) -> list[User]:
        return [User.from_dict(d) for d in self.users.find({"isActive": True}, sort=[("id", 1)])]

    def update_preferences(self, user_id: str, patch: dict[str, Any]) -> User:
        with self.store.lock(COLLECTION, user_id):
            user = self.require(user_id)
            if not isinstance(patch, dict):
                raise ValidationError("Preferences must be an object")
            prefs = self._parse_preferences({**user.preferences.to_dict(), **patch})
            user.preferences = prefs
            return self.save(user)

    def _parse_preferences(self, d: dict[str, Any]) -> Preferences:
        try:
            prefs = Preferences.from_dict(d)
        except (TypeError, ValueError):
            raise ValidationError(f"Preferences must be whole numbers: {d!r}")
        self._validate_preferences(prefs)
        return prefs

    def _validate_preferences(self, prefs: Preferences) -> None:
        errors = []
        if not 5 <= prefs.pomodoro_duration <= 60:
            errors.append("pomodoroDuration must be between 5 and 60 minutes")
        if not 1 <= prefs.break_duration <= 30:
            errors.append("breakDuration must be between 1 and 30 minutes")
        limit = prefs.daily_task_limit
        if limit is not None and not 1 <= limit <= self.max_daily_task_limit:
            errors.append(f"dailyTaskLimit must be between 1 and {self.max_daily_task_limit}")
        if errors:
            raise ValidationError(errors)
