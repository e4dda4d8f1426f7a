"""Per-member progress records and the resolved status tree"""
from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from deoglory.models.content import StageKind, STAGE_ORDER


class StageStatus(str, Enum):
    LOCKED = "locked"
    CURRENT = "current"
    COMPLETED = "completed"


class LessonStatus(str, Enum):
    LOCKED = "locked"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class SeasonProgressStatus(str, Enum):
    LOCKED = "locked"
    CURRENT = "current"
    COMPLETED = "completed"


class StageProgress(BaseModel):
    """Completion fact for one stage of one lesson"""
    stage: StageKind
    completed: bool = False
    completed_units: int = Field(default=0, ge=0)
    total_units: int = Field(default=1, ge=0)
    completed_at: Optional[datetime] = None


class LessonProgress(BaseModel):
    """The three stages of a lesson, always in STAGE_ORDER"""
    lesson_id: int
    stages: list[StageProgress]

    @classmethod
    def empty(cls, lesson_id: int, totals: Optional[dict[StageKind, int]] = None) -> "LessonProgress":
        totals = totals or {}
        return cls(
            lesson_id=lesson_id,
            stages=[StageProgress(stage=kind, total_units=totals.get(kind, 1)) for kind in STAGE_ORDER],
        )

    def with_totals(self, totals: dict[StageKind, int]) -> "LessonProgress":
        """Copy whose stage sizes come from the lesson, not from stored rows"""
        stages = []
        for stage in self.stages:
            total = totals.get(stage.stage, 1)
            units = total if stage.completed else min(stage.completed_units, total)
            stages.append(stage.model_copy(update={"total_units": total, "completed_units": units}))
        return self.model_copy(update={"stages": stages})

    def stage(self, kind: StageKind) -> StageProgress:
        return self.stages[STAGE_ORDER.index(kind)]

    @property
    def is_completed(self) -> bool:
        return all(stage.completed for stage in self.stages)


class StageView(BaseModel):
    stage: StageKind
    status: StageStatus
    completed_units: int
    total_units: int


class LessonView(BaseModel):
    lesson_id: int
    season_id: int
    title: str
    order_index: int
    xp_reward: int
    status: LessonStatus
    current_stage: Optional[StageKind] = None
    stages: list[StageView]


class SeasonView(BaseModel):
    season_id: int
    title: str
    order_index: int
    status: SeasonProgressStatus
    is_accessible: bool
    is_ended: bool
    lessons_completed: int
    total_lessons: int
    final_challenge_available: bool = False
    is_mastered: bool = False
    lessons: list[LessonView]


class ProgressTree(BaseModel):
    """Season -> lesson -> stage statuses for one member"""
    user_id: str
    seasons: list[SeasonView]


class SeasonProgress(BaseModel):
    """Season-level Final Challenge outcome for one member"""
    user_id: str
    season_id: int
    final_challenge_completed: bool = False
    final_challenge_perfect: bool = False
    is_mastered: bool = False
    best_score: float = 0.0
