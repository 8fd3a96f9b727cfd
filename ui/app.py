from __future__ import annotations

import logging
import os
import threading
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from focusflow import (
    DailyLimitExceeded,
    FocusFlow,
    FocusFlowError,
    InvariantViolation,
    NotFound,
    TransientStorageError,
    ValidationError,
)

logger = logging.getLogger("focusflow.http")


# ── Engine ────────────────────────────────────────────────────

_engine: FocusFlow | None = None
_engine_lock = threading.Lock()


def get_engine() -> FocusFlow:
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = FocusFlow.from_workspace()
        return _engine


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    engine = None
    if os.environ.get("FOCUSFLOW_SCHEDULER", "1") != "0":
        engine = get_engine()
        engine.start()
    yield
    if engine is not None:
        engine.shutdown()


app = FastAPI(title="FocusFlow API", version="0.1.0", lifespan=lifespan)


# ── Errors ────────────────────────────────────────────────────

def _status_for(exc: FocusFlowError) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, DailyLimitExceeded):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, InvariantViolation):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, TransientStorageError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(FocusFlowError)
async def focusflow_error_handler(request: Request, exc: FocusFlowError) -> JSONResponse:
    code = _status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
        body: dict[str, Any] = {"code": exc.code, "message": "Internal server error"}
        if code == status.HTTP_503_SERVICE_UNAVAILABLE:
            body["message"] = "Storage temporarily unavailable, please retry"
    else:
        body = exc.to_dict()
    return JSONResponse(status_code=code, content={"ok": False, "error": body})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("%s %s crashed", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"ok": False, "error": {"code": "unexpected", "message": "Internal server error"}},
    )


# ── Caller identity ───────────────────────────────────────────

def get_current_user(x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return x_user_id


DISTRACTION_ARGS = {
    "durationSeconds": "duration_seconds",
    "severity": "severity",
    "impact": "impact",
    "context": "context",
    "source": "source",
    "tags": "tags",
}


def _kwargs(payload: dict[str, Any], mapping: dict[str, str]) -> dict[str, Any]:
    """Pick camelCase payload keys and rename them to keyword arguments."""
    return {arg: payload[key] for key, arg in mapping.items() if key in payload}


# ── Health ────────────────────────────────────────────────────

@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"ok": "true"}


# ── Users ─────────────────────────────────────────────────────

@app.get("/api/users/me")
def api_get_me(user_id: str = Depends(get_current_user), engine: FocusFlow = Depends(get_engine)) -> dict[str, Any]:
    return {"ok": True, "user": engine.users.require(user_id).to_dict()}


@app.put("/api/users/me/preferences")
def api_update_preferences(
    payload: dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    user = engine.users.update_preferences(user_id, payload)
    return {"ok": True, "user": user.to_dict()}


# ── Tasks ─────────────────────────────────────────────────────

@app.get("/api/tasks")
def api_list_tasks(
    date: str | None = None,
    start: str | None = None,
    end: str | None = None,
    completed: bool | None = None,
    priority: str | None = None,
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    """Tasks for one day (default today), or for a start/end range."""
    if start or end:
        tasks = engine.tasks.list(user_id, start, end, completed=completed, priority=priority)
        return {"ok": True, "tasks": [t.to_dict() for t in tasks]}
    day = date or engine.tasks.today().isoformat()
    tasks = engine.tasks.list_for_day(user_id, day)
    return {
        "ok": True,
        "date": day,
        "limit": engine.tasks.daily_limit(user_id),
        "tasks": [t.to_dict() for t in tasks],
    }


@app.post("/api/tasks")
def api_create_task(
    payload: dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    fields = dict(payload)
    title = fields.pop("title", None)
    task_date = fields.pop("taskDate", None) or engine.tasks.today().isoformat()
    task = engine.tasks.create(user_id, task_date, title, **fields)
    return {"ok": True, "task": task.to_dict()}


@app.post("/api/tasks/reorder")
def api_reorder_tasks(
    payload: dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    task_date = payload.get("taskDate") or engine.tasks.today().isoformat()
    tasks = engine.tasks.reorder(user_id, task_date, payload.get("tasks"))
    return {"ok": True, "tasks": [t.to_dict() for t in tasks]}


@app.put("/api/tasks/{task_id}")
def api_update_task(
    task_id: str,
    payload: dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    task = engine.tasks.update(user_id, task_id, payload)
    return {"ok": True, "task": task.to_dict()}


@app.delete("/api/tasks/{task_id}")
def api_delete_task(
    task_id: str,
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    engine.tasks.delete(user_id, task_id)
    return {"ok": True, "task_id": task_id}


@app.post("/api/tasks/{task_id}/complete")
def api_complete_task(
    task_id: str,
    payload: dict[str, Any] = Body(default={}),
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    completion = engine.complete_task(user_id, task_id, payload.get("actualTime"))
    return {"ok": True, **completion.to_dict()}


@app.post("/api/tasks/{task_id}/uncomplete")
def api_uncomplete_task(
    task_id: str,
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    task = engine.tasks.uncomplete(user_id, task_id)
    return {"ok": True, "task": task.to_dict()}


# ── Pomodoro sessions ─────────────────────────────────────────

@app.post("/api/pomodoro/start")
def api_start_session(
    payload: dict[str, Any] = Body(default={}),
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    session = engine.sessions.start(
        user_id,
        payload.get("sessionType", "work"),
        payload.get("duration"),
    )
    return {"ok": True, "session": session.to_dict()}


@app.get("/api/pomodoro/active")
def api_active_session(
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    session, distractions = engine.sessions.active_with_distractions(user_id)
    return {
        "ok": True,
        "session": session.to_dict() if session else None,
        "distractions": [d.to_dict() for d in distractions],
    }


@app.get("/api/pomodoro/history")
def api_session_history(
    start: str | None = None,
    end: str | None = None,
    limit: int = 30,
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    sessions = engine.sessions.history(user_id, start, end, limit)
    return {"ok": True, "sessions": [s.to_dict() for s in sessions]}


@app.post("/api/pomodoro/{session_id}/pause")
def api_pause_session(
    session_id: str,
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    return {"ok": True, "session": engine.sessions.pause(user_id, session_id).to_dict()}


@app.post("/api/pomodoro/{session_id}/resume")
def api_resume_session(
    session_id: str,
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    return {"ok": True, "session": engine.sessions.resume(user_id, session_id).to_dict()}


@app.post("/api/pomodoro/{session_id}/complete")
def api_complete_session(
    session_id: str,
    payload: dict[str, Any] = Body(default={}),
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    completion = engine.complete_session(
        user_id, session_id, notes=payload.get("notes"), rating=payload.get("rating"),
    )
    return {"ok": True, **completion.to_dict()}


@app.post("/api/pomodoro/{session_id}/cancel")
def api_cancel_session(
    session_id: str,
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    session = engine.sessions.cancel(user_id, session_id)
    return {"ok": True, "session": session.to_dict()}


@app.post("/api/pomodoro/{session_id}/distractions")
def api_session_distraction(
    session_id: str,
    payload: dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    distraction = engine.sessions.add_distraction(
        user_id, session_id, payload.get("type", ""), payload.get("note", ""),
        **_kwargs(payload, DISTRACTION_ARGS),
    )
    return {"ok": True, "distraction": distraction.to_dict()}


# ── Distractions ──────────────────────────────────────────────

@app.get("/api/distractions")
def api_list_distractions(
    sessionId: str | None = None,
    type: str | None = None,
    resolved: bool | None = None,
    limit: int = 50,
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    items = engine.distractions.list(user_id, session_id=sessionId, type=type, resolved=resolved, limit=limit)
    return {"ok": True, "distractions": [d.to_dict() for d in items]}


@app.post("/api/distractions")
def api_log_distraction(
    payload: dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    args = _kwargs(payload, {**DISTRACTION_ARGS, "description": "description"})
    distraction = engine.distractions.log(user_id, payload.get("sessionId", ""), payload.get("type", ""), **args)
    return {"ok": True, "distraction": distraction.to_dict()}


@app.put("/api/distractions/{distraction_id}")
def api_update_distraction(
    distraction_id: str,
    payload: dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    distraction = engine.distractions.update(user_id, distraction_id, payload)
    return {"ok": True, "distraction": distraction.to_dict()}


@app.post("/api/distractions/{distraction_id}/resolve")
def api_resolve_distraction(
    distraction_id: str,
    payload: dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    distraction = engine.distractions.resolve(
        user_id, distraction_id, payload.get("resolutionMethod", ""), payload.get("notes"),
    )
    return {"ok": True, "distraction": distraction.to_dict()}


@app.delete("/api/distractions/{distraction_id}")
def api_delete_distraction(
    distraction_id: str,
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    engine.distractions.delete(user_id, distraction_id)
    return {"ok": True, "distraction_id": distraction_id}


# ── Rewards ───────────────────────────────────────────────────

@app.get("/api/rewards/progress")
def api_reward_progress(
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    return {"ok": True, "progress": engine.rewards.get_user_progress(user_id).to_dict()}


@app.post("/api/rewards/check")
def api_check_rewards(
    user_id: str = Depends(get_current_user),
    engine: FocusFlow = Depends(get_engine),
) -> dict[str, Any]:
    return {"ok": True, "rewards": engine.rewards.process_daily_rewards(user_id).to_dict()}


@app.post("/api/rewards/sweep")
def api_trigger_sweep(engine: FocusFlow = Depends(get_engine)) -> dict[str, Any]:
    """Run the daily sweep now for every active user."""
    return {"ok": True, "summary": engine.sweep.trigger().to_dict()}


@app.get("/api/rewards/sweep/status")
def api_sweep_status(engine: FocusFlow = Depends(get_engine)) -> dict[str, Any]:
    return {"ok": True, "status": engine.sweep.status()}
