"""FocusFlow engine: daily tasks, focus sessions, XP and rewards.

Public API re-exports for convenient imports:
    from focusflow import FocusFlow, FixedClock, MemoryStore, ...
"""

# Application
from focusflow.app import FocusFlow

# Collaborators
from focusflow.clock import Clock, FixedClock
from focusflow.config import (
    Settings,
    XPSettings,
    RewardSettings,
    SweepSettings,
    WeeklyGoal,
    load_settings,
    save_settings,
)
from focusflow.store import DocumentStore, MemoryStore, JsonFileStore
from focusflow.workspace import workspace_root

# Components
from focusflow.users import UserRepository
from focusflow.tasks import TaskLedger, validate_task
from focusflow.focus import FocusSessions
from focusflow.distractions import DistractionLog
from focusflow.progression import ProgressionEngine, add_xp, level_for_xp
from focusflow.rewards import RewardEngine
from focusflow.sweep import DailyRewardSweep

# Errors
from focusflow.errors import (
    FocusFlowError,
    ValidationError,
    InvariantViolation,
    DailyLimitExceeded,
    ActiveSessionExists,
    AlreadyInState,
    AlreadyCompleted,
    DuplicateOrder,
    OwnershipMismatch,
    NotFound,
    UserNotFound,
    TaskNotFound,
    SessionNotFound,
    DistractionNotFound,
    TransientStorageError,
    UnexpectedError,
)

# Models
from focusflow.models import (
    User,
    Preferences,
    Task,
    FocusSession,
    Distraction,
    XPResult,
    TaskCompletion,
    SessionCompletion,
    StreakRewardResult,
    WeeklyRewardResult,
    DailyRewardResult,
    UserProgress,
    SweepSummary,
)
