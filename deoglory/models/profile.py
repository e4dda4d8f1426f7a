"""Study profile and streak recovery models"""
from enum import Enum
from typing import Optional
from datetime import date, datetime
from pydantic import BaseModel, Field

from deoglory.config import DEFAULT_TIMEZONE


class StudyProfile(BaseModel):
    """One per member; the only shared mutable resource of the engine"""
    user_id: str
    total_xp: int = Field(default=0, ge=0)
    current_level: int = Field(default=1, ge=1)
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    hearts: int = 5
    hearts_max: int = 5
    crystals: int = Field(default=0, ge=0)
    last_activity_date: Optional[date] = None
    timezone: str = DEFAULT_TIMEZONE
    lessons_completed: int = Field(default=0, ge=0)
    streak_freezes_available: int = Field(default=0, ge=0)
    total_streak_freeze_used: int = Field(default=0, ge=0)
    # Per-day lesson counter behind the lesson crystal bonuses
    lessons_completed_today: int = Field(default=0, ge=0)
    last_lesson_date: Optional[date] = None
    version: int = 0


class StreakState(str, Enum):
    """Streak health as seen on a login/activity check"""
    NORMAL = "normal"
    AT_RISK = "at_risk"
    RECOVERABLE = "recoverable"
    LOST = "lost"


class StreakRecoveryRequest(BaseModel):
    """At most one per profile; resolved by paying, forfeiting, acknowledging or timing out"""
    user_id: str
    days_missed: int
    crystal_cost: int
    streak_at_risk: int
    streak_lost: bool = False
    opened_at: datetime
    expires_at: datetime


class StreakStatus(BaseModel):
    """Recovery prompt payload returned to the renderer"""
    state: StreakState
    needs_recovery: bool
    streak_at_risk: int
    days_missed: int
    crystal_cost: int
    crystals_available: int
    can_recover: bool
    streak_lost: bool
    current_streak: int
    freezes_available: int = 0
    freezes_used: int = 0


class ProfileSnapshot(BaseModel):
    """XP, level, streak and crystal snapshot"""
    user_id: str
    total_xp: int
    current_level: int
    xp_in_current_level: int
    xp_to_next_level: int
    progress_percent: float
    current_streak: int
    longest_streak: int
    crystals: int
    hearts: int
    hearts_max: int
    streak_freezes_available: int = 0
    last_activity_date: Optional[date] = None


class CrystalSummary(BaseModel):
    """Crystal balance and streak freeze shop state"""
    user_id: str
    balance: int
    freezes_available: int
    max_freezes: int
    next_freeze_cost: Optional[int] = None
    current_streak: int
    longest_streak: int
