"""Typed failures raised by the FocusFlow engine.

Callers (the HTTP adapter, the sweep) branch on the class, never on the
message. Every error carries a stable ``code`` and renders via ``to_dict``.
"""

from __future__ import annotations

from typing import Any


class FocusFlowError(Exception):
    """Base class for every engine failure."""

    code = "error"

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            d["details"] = self.details
        return d


# ── Validation ────────────────────────────────────────────────


class ValidationError(FocusFlowError):
    code = "validation_error"

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors), errors=self.errors)


# ── Business-rule rejections ──────────────────────────────────


class InvariantViolation(FocusFlowError):
    code = "invariant_violation"


class DailyLimitExceeded(InvariantViolation):
    code = "daily_limit_exceeded"

    def __init__(self, current: int, limit: int):
        self.current = current
        self.limit = limit
        super().__init__(
            f"Daily task limit reached ({current}/{limit})",
            current=current,
            limit=limit,
        )


class ActiveSessionExists(InvariantViolation):
    code = "active_session_exists"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__("You already have an active session", sessionId=session_id)


class AlreadyInState(InvariantViolation):
    code = "already_in_state"


class AlreadyCompleted(AlreadyInState):
    code = "already_completed"


class DuplicateOrder(InvariantViolation):
    code = "duplicate_order"

    def __init__(self, orders: list[int]):
        self.orders = sorted(set(orders))
        super().__init__(f"Duplicate order values: {self.orders}", orders=self.orders)


class OwnershipMismatch(InvariantViolation):
    code = "ownership_mismatch"

    def __init__(self, task_ids: list[str]):
        self.task_ids = list(task_ids)
        super().__init__(
            "Tasks do not belong to this user and day",
            taskIds=self.task_ids,
        )


# ── Missing entities ──────────────────────────────────────────


class NotFound(FocusFlowError):
    code = "not_found"
    entity = "Entity"

    def __init__(self, entity_id: str = "", message: str = ""):
        self.entity_id = entity_id
        super().__init__(message or f"{self.entity} not found: {entity_id}", id=entity_id)


class UserNotFound(NotFound):
    code = "user_not_found"
    entity = "User"


class TaskNotFound(NotFound):
    code = "task_not_found"
    entity = "Task"


class SessionNotFound(NotFound):
    code = "session_not_found"
    entity = "Session"


class DistractionNotFound(NotFound):
    code = "distraction_not_found"
    entity = "Distraction"


# ── Infrastructure ────────────────────────────────────────────


class TransientStorageError(FocusFlowError):
    """The persistence collaborator is unavailable. Safe to retry."""

    code = "storage_unavailable"


class UnexpectedError(FocusFlowError):
    code = "unexpected"
