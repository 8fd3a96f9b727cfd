"""Experience points and levels.

Level is a pure function of cumulative XP: ``floor(xp / xp_per_level) + 1``.
Crossing into a higher level grants a one-off bonus. The bonus is applied
once per call and is not itself checked for a further level crossing, so
``new_level`` in the result is the level reached by the earned amount alone.
The stored ``user.level`` is always recomputed from the final XP.
"""

from __future__ import annotations

import logging

from focusflow.config import XPSettings
from focusflow.errors import ValidationError
from focusflow.models import User, XPResult
from focusflow.store import DocumentStore
from focusflow.users import COLLECTION, UserRepository

logger = logging.getLogger(__name__)


def level_for_xp(xp: int, xp_per_level: int = 100) -> int:
    return xp // xp_per_level + 1


def xp_for_next_level(xp: int, xp_per_level: int = 100) -> int:
    """XP still needed to reach the next level."""
    return level_for_xp(xp, xp_per_level) * xp_per_level - xp


def level_progress(xp: int, xp_per_level: int = 100) -> float:
    """Percent (0-100) of the way through the current level."""
    into_level = xp - (level_for_xp(xp, xp_per_level) - 1) * xp_per_level
    return min(100.0, max(0.0, into_level / xp_per_level * 100))


def add_xp(user: User, amount: int, settings: XPSettings | None = None) -> XPResult:
    """Add ``amount`` XP to ``user`` in place and apply the level-up bonus."""
    if settings is None:
        settings = XPSettings()
    if amount < 0:
        raise ValidationError(f"XP amount must be non-negative, got {amount}")

    old_level = user.level
    user.xp += amount
    new_level = level_for_xp(user.xp, settings.xp_per_level)
    leveled_up = new_level > old_level

    bonus = settings.level_up_bonus if leveled_up else 0
    user.xp += bonus
    user.level = level_for_xp(user.xp, settings.xp_per_level)

    return XPResult(
        leveled_up=leveled_up,
        old_level=old_level,
        new_level=new_level,
        xp_gained=amount + bonus,
        level_up_bonus=bonus,
        total_xp=user.xp,
    )


class ProgressionEngine:
    """Applies XP grants to stored users as one locked read-modify-write."""

    def __init__(self, store: DocumentStore, settings: XPSettings | None = None):
        self.store = store
        self.settings = settings or XPSettings()
        self.users = UserRepository(store)

    def award(self, user_id: str, amount: int, reason: str = "") -> XPResult:
        with self.store.lock(COLLECTION, user_id):
            user = self.users.require(user_id)
            result = add_xp(user, amount, self.settings)
            self.users.save(user)
        logger.info(
            "Awarded %d XP to user %s (%s); total=%d level=%d%s",
            result.xp_gained, user_id, reason or "unspecified", result.total_xp, user.level,
            " [level up]" if result.leveled_up else "",
        )
        return result
