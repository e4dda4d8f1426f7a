"""Content tree models: seasons, lessons, stages and challenge questions"""
from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class SeasonStatus(str, Enum):
    """Authoring status of a season"""
    DRAFT = "draft"
    PUBLISHED = "published"
    ENDED = "ended"


class StageKind(str, Enum):
    """The three ordered stages of every lesson"""
    ESTUDE = "estude"
    MEDITE = "medite"
    RESPONDA = "responda"


# Order matters: a stage can only be entered once its predecessor is completed
STAGE_ORDER: tuple[StageKind, ...] = (StageKind.ESTUDE, StageKind.MEDITE, StageKind.RESPONDA)


class Season(BaseModel):
    """A season (also called unit): an ordered group of lessons"""
    id: int
    title: str
    order_index: int
    status: SeasonStatus = SeasonStatus.DRAFT
    total_lessons: int = 0
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    force_unlocked: bool = False
    is_ended: bool = False


class Lesson(BaseModel):
    """A lesson inside exactly one season"""
    id: int
    season_id: int
    order_index: int
    lesson_number: Optional[int] = None
    title: str
    xp_reward: int = Field(default=10, ge=0)
    # Number of sub-units (questions, readings) per stage
    stage_units: dict[StageKind, int] = Field(default_factory=dict)

    def total_units(self, stage: StageKind) -> int:
        return self.stage_units.get(stage, 1)


class Question(BaseModel):
    """Multiple-choice question of a Final Challenge"""
    id: str
    prompt: str
    options: list[str]
    correct_index: int


class PublicQuestion(BaseModel):
    """Question as shown to the member (no answer key)"""
    id: str
    prompt: str
    options: list[str]


class FinalChallenge(BaseModel):
    """Timed mastery quiz authored for a season"""
    id: int
    season_id: int
    title: str = "Desafio Final"
    description: Optional[str] = None
    questions: list[Question]
    question_count: int = Field(default=15, gt=0)
    time_limit_seconds: int = Field(default=150, gt=0)
    xp_reward: int = Field(default=100, ge=0)
    perfect_xp_bonus: int = Field(default=50, ge=0)
    is_active: bool = True
