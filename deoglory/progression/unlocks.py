"""
Unit/Season Unlock Resolver

Two gates, applied in order:
1. Season gate: seasons are walked in order_index; season k > 0 is only
   eligible once season k-1 is completed. A locked season forces every
   lesson and stage inside it to locked.
2. Lesson gate (inside an eligible season): the first lesson is reachable
   once the season is accessible, later lessons once the previous lesson
   is completed. Stages then follow the stage machine.
"""

from typing import Iterable, Mapping, Optional
from datetime import datetime
import logging

from deoglory.models.content import Lesson, Season, SeasonStatus
from deoglory.models.progress import (
    LessonProgress,
    LessonStatus,
    LessonView,
    ProgressTree,
    SeasonProgress,
    SeasonProgressStatus,
    SeasonView,
    StageStatus,
    StageView,
)
from deoglory.progression import stage_machine

logger = logging.getLogger(__name__)


def is_season_accessible(season: Season, now: datetime) -> bool:
    """Published (or ended) and started, or force-unlocked"""
    if season.status == SeasonStatus.DRAFT:
        return False
    if season.force_unlocked:
        return True
    return season.starts_at is None or season.starts_at <= now


def is_season_ended(season: Season, now: datetime) -> bool:
    if season.status == SeasonStatus.ENDED or season.is_ended:
        return True
    return season.ends_at is not None and season.ends_at <= now


def progress_for_lesson(lesson: Lesson, progress: Mapping[int, LessonProgress]) -> LessonProgress:
    """Stored progress of a lesson, sized by the lesson's stage_units"""
    found = progress.get(lesson.id)
    if found is None:
        return LessonProgress.empty(lesson.id, lesson.stage_units)
    return found.with_totals(lesson.stage_units)


def _lesson_view(lesson: Lesson, lesson_progress: LessonProgress, reachable: bool) -> LessonView:
    return LessonView(
        lesson_id=lesson.id,
        season_id=lesson.season_id,
        title=lesson.title,
        order_index=lesson.order_index,
        xp_reward=lesson.xp_reward,
        status=stage_machine.lesson_status(lesson_progress, reachable),
        current_stage=stage_machine.current_stage(lesson_progress, reachable),
        stages=stage_machine.resolve_stages(lesson_progress, reachable),
    )


def _force_locked(view: LessonView) -> LessonView:
    """Season-level lock overrides whatever the lesson would otherwise report"""
    return view.model_copy(update={
        "status": LessonStatus.LOCKED,
        "current_stage": None,
        "stages": [
            StageView(
                stage=stage.stage,
                status=StageStatus.LOCKED,
                completed_units=stage.completed_units,
                total_units=stage.total_units,
            )
            for stage in view.stages
        ],
    })


def sort_lessons(lessons: Iterable[Lesson]) -> list[Lesson]:
    return sorted(lessons, key=lambda l: (l.order_index, l.lesson_number or 0, l.id))


def resolve_lessons(
    season: Season,
    lessons: Iterable[Lesson],
    progress: Mapping[int, LessonProgress],
    now: datetime,
) -> list[LessonView]:
    """Lesson-level gate for one season, ignoring the season-level gate"""
    accessible = is_season_accessible(season, now)
    views = []
    previous_completed = True

    for lesson in sort_lessons(lessons):
        lesson_progress = progress_for_lesson(lesson, progress)
        reachable = accessible and previous_completed
        views.append(_lesson_view(lesson, lesson_progress, reachable))
        previous_completed = lesson_progress.is_completed

    return views


def resolve_progress_tree(
    user_id: str,
    seasons: Iterable[Season],
    lessons_by_season: Mapping[int, list[Lesson]],
    progress: Mapping[int, LessonProgress],
    now: datetime,
    season_progress: Optional[Mapping[int, SeasonProgress]] = None,
    challenge_seasons: Optional[set[int]] = None,
) -> ProgressTree:
    """
    Resolve the full status tree for one member

    Args:
        user_id: Member identifier
        seasons: Member-visible seasons (drafts are skipped)
        lessons_by_season: season_id -> lessons
        progress: lesson_id -> LessonProgress
        now: Injected current time
        season_progress: season_id -> Final Challenge outcome
        challenge_seasons: Season ids with an active Final Challenge
    """
    season_progress = season_progress or {}
    challenge_seasons = challenge_seasons or set()
    visible = sorted(
        (s for s in seasons if s.status != SeasonStatus.DRAFT),
        key=lambda s: (s.order_index, s.id),
    )

    views: list[SeasonView] = []
    previous_completed = True

    for index, season in enumerate(visible):
        accessible = is_season_accessible(season, now)
        lesson_views = resolve_lessons(season, lessons_by_season.get(season.id, []), progress, now)
        completed_count = sum(1 for v in lesson_views if v.status == LessonStatus.COMPLETED)
        all_done = bool(lesson_views) and completed_count == len(lesson_views)

        eligible = accessible and (index == 0 or previous_completed)
        if not eligible:
            status = SeasonProgressStatus.LOCKED
            lesson_views = [_force_locked(v) for v in lesson_views]
        elif all_done:
            status = SeasonProgressStatus.COMPLETED
        else:
            status = SeasonProgressStatus.CURRENT

        outcome = season_progress.get(season.id)
        views.append(SeasonView(
            season_id=season.id,
            title=season.title,
            order_index=season.order_index,
            status=status,
            is_accessible=accessible,
            is_ended=is_season_ended(season, now),
            lessons_completed=completed_count,
            total_lessons=len(lesson_views),
            final_challenge_available=status == SeasonProgressStatus.COMPLETED and season.id in challenge_seasons,
            is_mastered=bool(outcome and outcome.is_mastered),
            lessons=lesson_views,
        ))
        previous_completed = status == SeasonProgressStatus.COMPLETED

    return ProgressTree(user_id=user_id, seasons=views)


def find_season(tree: ProgressTree, season_id: int) -> Optional[SeasonView]:
    for season in tree.seasons:
        if season.season_id == season_id:
            return season
    return None


def find_lesson(tree: ProgressTree, lesson_id: int) -> Optional[LessonView]:
    for season in tree.seasons:
        for lesson in season.lessons:
            if lesson.lesson_id == lesson_id:
                return lesson
    return None


def is_lesson_reachable(tree: ProgressTree, lesson_id: int) -> bool:
    """Whether the lesson may be worked on after both gates"""
    lesson = find_lesson(tree, lesson_id)
    return lesson is not None and lesson.status != LessonStatus.LOCKED
