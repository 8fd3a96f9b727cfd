"""Distraction log: detailed interruptions attached to a focus session."""

from __future__ import annotations

import logging
from typing import Any

from focusflow.clock import Clock
from focusflow.errors import DistractionNotFound, SessionNotFound, ValidationError
from focusflow.models import (
    DISTRACTION_CONTEXTS,
    DISTRACTION_SOURCES,
    DISTRACTION_TYPES,
    RESOLUTION_METHODS,
    Distraction,
)
from focusflow.store import DocumentStore

logger = logging.getLogger(__name__)

COLLECTION = "distractions"
SESSIONS = "sessions"
UPDATABLE_FIELDS = {"type", "durationSeconds", "description", "severity", "impact", "context", "source", "tags"}


def validate_distraction(d: dict[str, Any]) -> list[str]:
    """Validate distraction fields (camelCase keys) and return list of errors."""
    errors = []
    if "type" in d and d["type"] not in DISTRACTION_TYPES:
        errors.append(f"Invalid distraction type: {d['type']}")
    if "durationSeconds" in d:
        v = d["durationSeconds"]
        if not isinstance(v, int) or isinstance(v, bool) or not 1 <= v <= 3600:
            errors.append("durationSeconds must be between 1 and 3600")
    for key in ("severity", "impact"):
        if key in d:
            v = d[key]
            if not isinstance(v, int) or isinstance(v, bool) or not 1 <= v <= 5:
                errors.append(f"{key} must be between 1 and 5")
    if len(str(d.get("description") or "")) > 500:
        errors.append("description cannot exceed 500 characters")
    if "context" in d and d["context"] not in DISTRACTION_CONTEXTS:
        errors.append(f"Invalid context: {d['context']}")
    if "source" in d and d["source"] not in DISTRACTION_SOURCES:
        errors.append(f"Invalid source: {d['source']}")
    if "tags" in d:
        tags = d["tags"]
        if not isinstance(tags, (list, tuple)):
            errors.append("tags must be a list")
        elif any(len(str(t)) > 20 for t in tags):
            errors.append("tags must be at most 20 characters each")
    return errors


class DistractionLog:
    def __init__(self, store: DocumentStore, clock: Clock):
        self.store = store
        self.clock = clock
        self.distractions = store.collection(COLLECTION)
        self.sessions = store.collection(SESSIONS)

    def log(
        self,
        user_id: str,
        session_id: str,
        type: str,
        duration_seconds: int = 30,
        description: str = "",
        severity: int = 3,
        impact: int = 3,
        context: str = "other",
        source: str = "external",
        tags: list[str] | tuple[str, ...] = (),
    ) -> Distraction:
        """Record a distraction. The session must exist and belong to ``user_id``."""
        errors = validate_distraction({
            "type": type,
            "durationSeconds": duration_seconds,
            "description": description,
            "severity": severity,
            "impact": impact,
            "context": context,
            "source": source,
            "tags": list(tags),
        })
        if errors:
            raise ValidationError(errors)

        if self.sessions.find_one({"id": session_id, "userId": user_id}) is None:
            raise SessionNotFound(session_id, message="Session not found or does not belong to user")

        distraction = Distraction(
            user_id=user_id,
            session_id=session_id,
            type=type,
            duration_seconds=duration_seconds,
            timestamp=self.clock.now(),
            description=description or "",
            severity=severity,
            impact=impact,
            context=context,
            source=source,
            tags=[str(t) for t in tags],
        )
        doc = self.distractions.insert(distraction.to_dict())
        logger.info("Logged %s distraction on session %s for user %s", type, session_id, user_id)
        return Distraction.from_dict(doc)

    def get(self, user_id: str, distraction_id: str) -> Distraction:
        doc = self.distractions.find_one({"id": distraction_id, "userId": user_id})
        if doc is None:
            raise DistractionNotFound(distraction_id)
        return Distraction.from_dict(doc)

    def list(
        self,
        user_id: str,
        session_id: str | None = None,
        type: str | None = None,
        resolved: bool | None = None,
        limit: int = 50,
        oldest_first: bool = False,
    ) -> list[Distraction]:
        flt: dict[str, Any] = {"userId": user_id}
        if session_id is not None:
            flt["sessionId"] = session_id
        if type is not None:
            flt["type"] = type
        if resolved is not None:
            flt["resolved"] = resolved
        docs = self.distractions.find(flt, sort=[("timestamp", 1 if oldest_first else -1)], limit=limit)
        return [Distraction.from_dict(d) for d in docs]

    def resolve(self, user_id: str, distraction_id: str, method: str, notes: str | None = None) -> Distraction:
        if method not in RESOLUTION_METHODS:
            raise ValidationError(f"Resolution method must be one of {', '.join(RESOLUTION_METHODS)}")
        current = self.get(user_id, distraction_id)
        patch: dict[str, Any] = {"resolved": True, "resolutionMethod": method}
        if notes:
            patch["description"] = f"{current.description} | Resolution: {notes}".lstrip(" |")
        doc = self.distractions.update(distraction_id, patch)
        return Distraction.from_dict(doc)

    def update(self, user_id: str, distraction_id: str, patch: dict[str, Any]) -> Distraction:
        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {sorted(unknown)}")
        errors = validate_distraction(patch)
        if errors:
            raise ValidationError(errors)
        self.get(user_id, distraction_id)
        doc = self.distractions.update(distraction_id, patch)
        return Distraction.from_dict(doc)

    def delete(self, user_id: str, distraction_id: str) -> None:
        self.get(user_id, distraction_id)
        self.distractions.delete(distraction_id)

    def delete_for_session(self, user_id: str, session_id: str) -> int:
        """Remove every distraction of a session. Returns how many were removed."""
        return self.distractions.delete_many({"userId": user_id, "sessionId": session_id})
