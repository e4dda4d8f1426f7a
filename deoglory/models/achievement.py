"""Achievement models"""
from enum import Enum
from pydantic import BaseModel
from typing import Optional, Any
from datetime import datetime


class AchievementCategory(str, Enum):
    """Achievement categories"""
    LESSONS = "lessons"
    STREAK = "streak"
    XP = "xp"
    LEVEL = "level"
    SPECIAL = "special"


class Achievement(BaseModel):
    """Achievement definition from the global catalog"""
    id: Optional[int] = None
    code: str
    name: str
    description: str
    icon: str
    category: AchievementCategory
    requirement: dict[str, Any]
    xp_reward: int = 0
    crystal_reward: int = 0
    is_secret: bool = False


class UserAchievement(BaseModel):
    """Member's unlocked achievement"""
    user_id: str
    code: str
    name: str
    unlocked_at: datetime
    xp_reward: int = 0
    crystal_reward: int = 0
