"""
Lesson Stage State Machine

Every lesson has three ordered stages: estude -> medite -> responda.
A stage is current when it is not completed and its predecessor is
(or it is the first stage of a reachable lesson). Anything else is locked.
"""

from typing import Optional
from datetime import datetime
import logging

from deoglory.exceptions import InvalidStageTransition
from deoglory.models.content import StageKind, STAGE_ORDER
from deoglory.models.progress import (
    LessonProgress,
    LessonStatus,
    StageStatus,
    StageView,
)

logger = logging.getLogger(__name__)


def current_stage(progress: LessonProgress, reachable: bool) -> Optional[StageKind]:
    """The single stage the member should be doing, or None"""
    if not reachable:
        return None
    for stage in progress.stages:
        if not stage.completed:
            return stage.stage
    return None


def stage_status(progress: LessonProgress, kind: StageKind, reachable: bool) -> StageStatus:
    if progress.stage(kind).completed:
        return StageStatus.COMPLETED
    if kind == current_stage(progress, reachable):
        return StageStatus.CURRENT
    return StageStatus.LOCKED


def lesson_status(progress: LessonProgress, reachable: bool) -> LessonStatus:
    if progress.is_completed:
        return LessonStatus.COMPLETED
    if reachable:
        return LessonStatus.IN_PROGRESS
    return LessonStatus.LOCKED


def resolve_stages(progress: LessonProgress, reachable: bool) -> list[StageView]:
    return [
        StageView(
            stage=stage.stage,
            status=stage_status(progress, stage.stage, reachable),
            completed_units=stage.completed_units,
            total_units=stage.total_units,
        )
        for stage in progress.stages
    ]


def ensure_current(progress: LessonProgress, kind: StageKind, reachable: bool) -> None:
    """Raise InvalidStageTransition unless `kind` is the current stage"""
    if not reachable and not progress.is_completed:
        raise InvalidStageTransition(
            f"Lesson {progress.lesson_id} is locked",
            lesson_id=progress.lesson_id,
            stage=kind.value,
            reason="lesson_locked",
        )

    if progress.stage(kind).completed:
        raise InvalidStageTransition(
            f"Stage {kind.value} of lesson {progress.lesson_id} already completed",
            lesson_id=progress.lesson_id,
            stage=kind.value,
            reason="already_completed",
        )

    expected = current_stage(progress, reachable)
    if kind != expected:
        raise InvalidStageTransition(
            f"Stage {kind.value} of lesson {progress.lesson_id} is locked; current is "
            f"{expected.value if expected else 'none'}",
            lesson_id=progress.lesson_id,
            stage=kind.value,
            reason="stage_locked",
        )


def complete_stage(
    progress: LessonProgress,
    kind: StageKind,
    reachable: bool,
    completed_at: datetime,
) -> LessonProgress:
    """
    Mark the current stage complete

    Returns a new LessonProgress; the input is left untouched so a rejected
    or rolled back transition never leaves partial state behind.
    """
    ensure_current(progress, kind, reachable)

    updated = progress.model_copy(deep=True)
    stage = updated.stage(kind)
    stage.completed = True
    stage.completed_units = stage.total_units
    stage.completed_at = completed_at

    logger.info(f"Lesson {progress.lesson_id}: stage {kind.value} completed")
    return updated


def record_unit_progress(
    progress: LessonProgress,
    kind: StageKind,
    completed_units: int,
    reachable: bool,
) -> LessonProgress:
    """Update sub-progress inside the current stage (bounded, never decreasing)"""
    ensure_current(progress, kind, reachable)

    updated = progress.model_copy(deep=True)
    stage = updated.stage(kind)
    bounded = min(max(completed_units, 0), stage.total_units)
    stage.completed_units = max(stage.completed_units, bounded)
    return updated


def next_stage(kind: StageKind) -> Optional[StageKind]:
    index = STAGE_ORDER.index(kind)
    if index + 1 < len(STAGE_ORDER):
        return STAGE_ORDER[index + 1]
    return None
