"""Task ledger for FocusFlow: bounded daily task lists with a dense order index.

Every task belongs to one ``(user, day)`` bucket. A bucket holds at most the
user's daily limit and its ``order`` values are distinct. Mutations that
touch a bucket run under the bucket lock so count-then-insert cannot race.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

from focusflow.clock import Clock
from focusflow.config import Settings
from focusflow.errors import (
    AlreadyInState,
    DailyLimitExceeded,
    DuplicateOrder,
    OwnershipMismatch,
    TaskNotFound,
    ValidationError,
)
from focusflow.models import PRIORITIES, Task, TaskCompletion
from focusflow.store import DocumentStore
from focusflow.timewindow import local_day, parse_day, to_iso
from focusflow.users import UserRepository

logger = logging.getLogger(__name__)

COLLECTION = "tasks"
MAX_DAYS_AHEAD = 366
EDITABLE_FIELDS = {"title", "description", "priority", "category", "estimatedTime", "actualTime", "tags", "taskDate"}


# ── Validation ────────────────────────────────────────────────


def validate_task(task: dict[str, Any]) -> list[str]:
    """Validate task fields (camelCase keys) and return list of errors (empty if valid)."""
    errors = []
    title = task.get("title")
    if title is None or not str(title).strip():
        errors.append("Missing required field: title")
    elif len(str(title).strip()) > 100:
        errors.append("title must be at most 100 characters")

    if len(str(task.get("description") or "")) > 500:
        errors.append("description must be at most 500 characters")
    if len(str(task.get("category") or "")) > 50:
        errors.append("category must be at most 50 characters")

    if "priority" in task and task["priority"] not in PRIORITIES:
        errors.append(f"Invalid priority: {task['priority']}")

    est = task.get("estimatedTime")
    if est is not None:
        if not isinstance(est, int) or isinstance(est, bool) or not 1 <= est <= 480:
            errors.append("estimatedTime must be an integer between 1 and 480 minutes")

    actual = task.get("actualTime")
    if actual is not None:
        if not isinstance(actual, int) or isinstance(actual, bool) or actual < 0:
            errors.append("actualTime must be a non-negative integer")

    tags = task.get("tags")
    if tags is not None:
        if not isinstance(tags, list):
            errors.append("tags must be a list")
        elif any(len(str(t)) > 20 for t in tags):
            errors.append("tags must be at most 20 characters each")

    return errors


def _coerce_day(value: Any) -> date:
    try:
        day = parse_day(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid task date: {value!r}")
    if day is None:
        raise ValidationError("Missing required field: taskDate")
    return day


def _normalise_pairs(ordered_pairs: Any) -> list[tuple[str, int]]:
    pairs: list[tuple[str, int]] = []
    try:
        items = list(ordered_pairs or [])
    except TypeError:
        raise ValidationError(f"Reorder expects a list of tasks, got {ordered_pairs!r}")
    for item in items:
        if isinstance(item, dict):
            task_id, order = item.get("id"), item.get("order")
        elif isinstance(item, (list, tuple)) and len(item) == 2:
            task_id, order = item
        else:
            raise ValidationError(f"Invalid reorder entry: {item!r}")
        if not task_id or not isinstance(order, int) or isinstance(order, bool) or order < 0:
            raise ValidationError(f"Invalid reorder entry: {item!r}")
        pairs.append((str(task_id), order))
    if not pairs:
        raise ValidationError("Reorder requires at least one task")
    ids = [task_id for task_id, _ in pairs]
    if len(set(ids)) != len(ids):
        raise ValidationError("Each task may appear only once in a reorder")
    return pairs


# ── Ledger ────────────────────────────────────────────────────


class TaskLedger:
    def __init__(self, store: DocumentStore, clock: Clock, settings: Settings):
        self.store = store
        self.clock = clock
        self.settings = settings
        self.tasks = store.collection(COLLECTION)
        self.users = UserRepository(store, settings.max_daily_task_limit)

    # ── Queries ──

    def today(self) -> date:
        return local_day(self.clock.now(), self.settings.tz)

    def get(self, user_id: str, task_id: str) -> Task:
        doc = self.tasks.find_one({"id": task_id, "userId": user_id})
        if doc is None:
            raise TaskNotFound(task_id)
        return Task.from_dict(doc)

    def list_for_day(self, user_id: str, task_date: date | str) -> list[Task]:
        day = _coerce_day(task_date)
        docs = self.tasks.find(
            {"userId": user_id, "taskDate": day.isoformat()},
            sort=[("order", 1), ("createdAt", 1)],
        )
        return [Task.from_dict(d) for d in docs]

    def list(
        self,
        user_id: str,
        start: date | str | None = None,
        end: date | str | None = None,
        completed: bool | None = None,
        priority: str | None = None,
    ) -> list[Task]:
        """Tasks in an inclusive day range, ordered by day then order."""
        flt: dict[str, Any] = {"userId": user_id}
        day_range: dict[str, str] = {}
        if start is not None:
            day_range["$gte"] = _coerce_day(start).isoformat()
        if end is not None:
            day_range["$lte"] = _coerce_day(end).isoformat()
        if day_range:
            flt["taskDate"] = day_range
        if completed is not None:
            flt["completed"] = completed
        if priority is not None:
            flt["priority"] = priority
        docs = self.tasks.find(flt, sort=[("taskDate", 1), ("order", 1), ("createdAt", 1)])
        return [Task.from_dict(d) for d in docs]

    def daily_limit(self, user_id: str) -> int:
        user = self.users.require(user_id)
        if user.preferences.daily_task_limit is not None:
            return user.preferences.daily_task_limit
        return self.settings.daily_task_limit

    # ── Create ──

    def create(
        self,
        user_id: str,
        task_date: date | str,
        title: str,
        limit: int | None = None,
        **fields: Any,
    ) -> Task:
        """Create a task for ``task_date``, enforcing the per-day limit.

        Raises ValidationError for past dates or bad fields, and
        DailyLimitExceeded when the day is full.
        """
        day = _coerce_day(task_date)
        self._check_day_in_range(day)

        data = {"title": title, **fields}
        errors = validate_task(data)
        unknown = set(fields) - (EDITABLE_FIELDS - {"taskDate"})
        if unknown:
            errors.append(f"Unknown task fields: {sorted(unknown)}")
        if errors:
            raise ValidationError(errors)

        if limit is None:
            limit = self.daily_limit(user_id)
        else:
            self.users.require(user_id)

        bucket = {"userId": user_id, "taskDate": day.isoformat()}
        with self.store.lock(COLLECTION, user_id, day.isoformat()):
            existing = self.tasks.find(bucket)
            count = len(existing)
            if count >= limit:
                raise DailyLimitExceeded(count, limit)

            used = {d.get("order", 0) for d in existing}
            order = count if count not in used else max(used) + 1

            task = Task(
                user_id=user_id,
                title=str(title).strip(),
                description=str(fields.get("description") or ""),
                task_date=day,
                priority=fields.get("priority", "medium"),
                category=str(fields.get("category") or ""),
                order=order,
                estimated_time=fields.get("estimatedTime"),
                actual_time=fields.get("actualTime") or 0,
                tags=list(fields.get("tags") or []),
                created_at=self.clock.now(),
            )
            doc = self.tasks.insert(task.to_dict())

            # Writers that bypass this lock (another process on a shared
            # store without flock) are caught here: keep the oldest ``limit``.
            after = self.tasks.find(bucket, sort=[("createdAt", 1), ("id", 1)])
            if len(after) > limit and doc["id"] not in {d["id"] for d in after[:limit]}:
                self.tasks.delete(doc["id"])
                raise DailyLimitExceeded(len(after) - 1, limit)

        logger.info("Created task %s for user %s on %s (order %d)", doc["id"], user_id, day, order)
        return Task.from_dict(doc)

    # ── Reorder ──

    def reorder(self, user_id: str, task_date: date | str, ordered_pairs: Any) -> list[Task]:
        """Assign new ``order`` values to tasks of one day, all or nothing."""
        day = _coerce_day(task_date)
        pairs = _normalise_pairs(ordered_pairs)

        with self.store.lock(COLLECTION, user_id, day.isoformat()):
            day_tasks = {
                d["id"]: d for d in self.tasks.find({"userId": user_id, "taskDate": day.isoformat()})
            }
            foreign = [task_id for task_id, _ in pairs if task_id not in day_tasks]
            if foreign:
                raise OwnershipMismatch(foreign)

            targets = [order for _, order in pairs]
            if len(set(targets)) != len(targets):
                raise DuplicateOrder([o for o in targets if targets.count(o) > 1])

            final = {task_id: d.get("order", 0) for task_id, d in day_tasks.items()}
            final.update(dict(pairs))
            values = list(final.values())
            if len(set(values)) != len(values):
                raise DuplicateOrder([o for o in values if values.count(o) > 1])

            self.tasks.update_many([(task_id, {"order": order}) for task_id, order in pairs])

        logger.info("Reordered %d tasks for user %s on %s", len(pairs), user_id, day)
        return self.list_for_day(user_id, day)

    # ── Completion ──

    def complete(self, user_id: str, task_id: str, actual_time: int | None = None) -> TaskCompletion:
        """Mark a task completed. Returns the XP the caller should award."""
        if actual_time is not None:
            errors = validate_task({"title": "-", "actualTime": actual_time})
            if errors:
                raise ValidationError(errors)
        patch: dict[str, Any] = {"completed": True, "completedAt": to_iso(self.clock.now())}
        if actual_time is not None:
            patch["actualTime"] = actual_time

        doc = self.tasks.update_one({"id": task_id, "userId": user_id, "completed": False}, patch)
        if doc is None:
            self.get(user_id, task_id)
            raise AlreadyInState(f"Task is already completed: {task_id}")

        logger.info("Task %s completed by user %s", task_id, user_id)
        return TaskCompletion(task=Task.from_dict(doc), xp_awarded=self.settings.xp.task)

    def uncomplete(self, user_id: str, task_id: str) -> Task:
        doc = self.tasks.update_one(
            {"id": task_id, "userId": user_id, "completed": True},
            {"completed": False, "completedAt": None},
        )
        if doc is None:
            self.get(user_id, task_id)
            raise AlreadyInState(f"Task is not completed: {task_id}")
        logger.info("Task %s marked incomplete by user %s", task_id, user_id)
        return Task.from_dict(doc)

    def revert_completion(self, previous: Task) -> None:
        """Restore a task to its pre-completion record after a failed XP grant."""
        self.tasks.update_one(
            {"id": previous.id, "userId": previous.user_id, "completed": True},
            {"completed": False, "completedAt": None, "actualTime": previous.actual_time},
        )
        logger.warning("Reverted completion of task %s for user %s", previous.id, previous.user_id)

    # ── Update / delete ──

    def update(self, user_id: str, task_id: str, patch: dict[str, Any]) -> Task:
        """Edit task fields. Moving to another day must respect that day's limit."""
        unknown = set(patch) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {sorted(unknown)}")

        current = self.get(user_id, task_id)
        merged = {**current.to_dict(), **patch}
        errors = validate_task(merged)
        if errors:
            raise ValidationError(errors)

        changes = dict(patch)
        if "title" in changes:
            changes["title"] = str(changes["title"]).strip()
        if "taskDate" not in changes:
            doc = self.tasks.update(task_id, changes)
            return Task.from_dict(doc)

        new_day = _coerce_day(changes["taskDate"])
        old_day = current.task_date
        changes["taskDate"] = new_day.isoformat()
        if new_day == old_day:
            return Task.from_dict(self.tasks.update(task_id, changes))
        self._check_day_in_range(new_day)

        limit = self.daily_limit(user_id)
        first, second = sorted([old_day.isoformat(), new_day.isoformat()])
        with self.store.lock(COLLECTION, user_id, first), self.store.lock(COLLECTION, user_id, second):
            target = self.tasks.find({"userId": user_id, "taskDate": new_day.isoformat()})
            if len(target) >= limit:
                raise DailyLimitExceeded(len(target), limit)
            used = {d.get("order", 0) for d in target}
            changes["order"] = len(target) if len(target) not in used else max(used) + 1
            doc = self.tasks.update(task_id, changes)
            self._compact(user_id, old_day)

        logger.info("Moved task %s for user %s from %s to %s", task_id, user_id, old_day, new_day)
        return Task.from_dict(doc)

    def delete(self, user_id: str, task_id: str) -> None:
        task = self.get(user_id, task_id)
        with self.store.lock(COLLECTION, user_id, task.task_date.isoformat()):
            if not self.tasks.delete(task_id):
                raise TaskNotFound(task_id)
            self._compact(user_id, task.task_date)
        logger.info("Deleted task %s for user %s", task_id, user_id)

    # ── Internals ──

    def _check_day_in_range(self, day: date) -> None:
        today = self.today()
        if day < today:
            raise ValidationError("Cannot create tasks for past dates")
        if day > today + timedelta(days=MAX_DAYS_AHEAD):
            raise ValidationError("Cannot create tasks more than 1 year in the future")

    def _compact(self, user_id: str, day: date) -> None:
        """Renumber a day's remaining tasks to 0..n-1, keeping their relative order."""
        docs = self.tasks.find(
            {"userId": user_id, "taskDate": day.isoformat()},
            sort=[("order", 1), ("createdAt", 1)],
        )
        patches = [(d["id"], {"order": i}) for i, d in enumerate(docs) if d.get("order") != i]
        if patches:
            self.tasks.update_many(patches)
