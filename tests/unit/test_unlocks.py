"""
Unit tests for the season/lesson unlock resolver
"""
from datetime import timedelta

import pytest

from deoglory.models.content import Lesson, Season, SeasonStatus, StageKind
from deoglory.models.progress import LessonProgress, LessonStatus, SeasonProgress, SeasonProgressStatus, StageProgress, StageStatus
from deoglory.progression import unlocks


def make_season(season_id, order_index, **fields):
    fields.setdefault("status", SeasonStatus.PUBLISHED)
    return Season(id=season_id, title=f"Season {season_id}", order_index=order_index, **fields)


def make_lessons(season_id, count):
    return [
        Lesson(id=season_id * 100 + i, season_id=season_id, order_index=i, title=f"Lesson {i}")
        for i in range(1, count + 1)
    ]


@pytest.fixture
def catalog():
    seasons = [make_season(1, 0), make_season(2, 1)]
    lessons = {1: make_lessons(1, 2), 2: make_lessons(2, 2)}
    return seasons, lessons


# ============================================================================
# Lesson Gate Tests
# ============================================================================

def test_fresh_member_only_first_lesson_reachable(catalog, now):
    seasons, lessons = catalog

    tree = unlocks.resolve_progress_tree("u1", seasons, lessons, {}, now)

    first, second = tree.seasons
    assert first.status == SeasonProgressStatus.CURRENT
    assert [l.status for l in first.lessons] == [LessonStatus.IN_PROGRESS, LessonStatus.LOCKED]
    assert first.lessons[0].stages[0].status == StageStatus.CURRENT
    assert second.status == SeasonProgressStatus.LOCKED


def test_next_lesson_unlocks_after_previous_completed(catalog, progress_for, now):
    seasons, lessons = catalog

    tree = unlocks.resolve_progress_tree("u1", seasons, lessons, {101: progress_for(101, 3)}, now)

    assert [l.status for l in tree.seasons[0].lessons] == [LessonStatus.COMPLETED, LessonStatus.IN_PROGRESS]
    assert unlocks.is_lesson_reachable(tree, 102)
    assert not unlocks.is_lesson_reachable(tree, 201)


def test_lessons_sorted_by_order_index(now):
    season = make_season(1, 0)
    lessons = list(reversed(make_lessons(1, 3)))

    views = unlocks.resolve_lessons(season, lessons, {}, now)

    assert [v.lesson_id for v in views] == [101, 102, 103]


# ============================================================================
# Season Gate Tests
# ============================================================================

def test_completed_season_unlocks_next(catalog, progress_for, now):
    seasons, lessons = catalog
    progress = {101: progress_for(101, 3), 102: progress_for(102, 3)}

    tree = unlocks.resolve_progress_tree("u1", seasons, lessons, progress, now)

    assert tree.seasons[0].status == SeasonProgressStatus.COMPLETED
    assert tree.seasons[1].status == SeasonProgressStatus.CURRENT
    assert tree.seasons[1].lessons[0].status == LessonStatus.IN_PROGRESS


def test_locked_season_overrides_lesson_progress(catalog, progress_for, now):
    seasons, lessons = catalog
    # Progress recorded in season 2 while season 1 is incomplete
    progress = {201: progress_for(201, 1)}

    tree = unlocks.resolve_progress_tree("u1", seasons, lessons, progress, now)

    locked = tree.seasons[1]
    assert locked.status == SeasonProgressStatus.LOCKED
    assert all(l.status == LessonStatus.LOCKED for l in locked.lessons)
    assert all(s.status == StageStatus.LOCKED for l in locked.lessons for s in l.stages)
    assert all(l.current_stage is None for l in locked.lessons)


def test_drafts_are_skipped(catalog, now):
    seasons, lessons = catalog
    seasons.insert(1, make_season(9, 0, status=SeasonStatus.DRAFT))
    lessons[9] = make_lessons(9, 1)

    tree = unlocks.resolve_progress_tree("u1", seasons, lessons, {}, now)

    assert [s.season_id for s in tree.seasons] == [1, 2]


def test_future_season_not_accessible(now):
    season = make_season(1, 0, starts_at=now + timedelta(days=3))

    tree = unlocks.resolve_progress_tree("u1", [season], {1: make_lessons(1, 1)}, {}, now)

    assert tree.seasons[0].status == SeasonProgressStatus.LOCKED
    assert tree.seasons[0].is_accessible is False


def test_force_unlock_opens_future_season(now):
    season = make_season(1, 0, starts_at=now + timedelta(days=3), force_unlocked=True)

    assert unlocks.is_season_accessible(season, now)


def test_force_unlock_does_not_skip_season_order(catalog, now):
    seasons, lessons = catalog
    seasons[1] = make_season(2, 1, force_unlocked=True)

    tree = unlocks.resolve_progress_tree("u1", seasons, lessons, {}, now)

    assert tree.seasons[1].status == SeasonProgressStatus.LOCKED


def test_ended_season_flags(now):
    assert unlocks.is_season_ended(make_season(1, 0, status=SeasonStatus.ENDED), now)
    assert unlocks.is_season_ended(make_season(1, 0, ends_at=now - timedelta(seconds=1)), now)
    assert not unlocks.is_season_ended(make_season(1, 0, ends_at=now + timedelta(days=1)), now)


def test_empty_season_never_completed(now):
    tree = unlocks.resolve_progress_tree("u1", [make_season(1, 0)], {}, {}, now)

    assert tree.seasons[0].status == SeasonProgressStatus.CURRENT


# ============================================================================
# Final Challenge Availability
# ============================================================================

def test_final_challenge_available_only_when_completed(catalog, progress_for, now):
    seasons, lessons = catalog
    progress = {101: progress_for(101, 3), 102: progress_for(102, 3)}
    outcome = {1: SeasonProgress(user_id="u1", season_id=1, is_mastered=True)}

    tree = unlocks.resolve_progress_tree(
        "u1", seasons, lessons, progress, now, season_progress=outcome, challenge_seasons={1, 2}
    )

    assert tree.seasons[0].final_challenge_available is True
    assert tree.seasons[0].is_mastered is True
    assert tree.seasons[1].final_challenge_available is False


def test_find_helpers(catalog, now):
    seasons, lessons = catalog
    tree = unlocks.resolve_progress_tree("u1", seasons, lessons, {}, now)

    assert unlocks.find_season(tree, 2).season_id == 2
    assert unlocks.find_season(tree, 99) is None
    assert unlocks.find_lesson(tree, 102).lesson_id == 102
    assert not unlocks.is_lesson_reachable(tree, 999)


# ============================================================================
# Stage Size Tests
# ============================================================================

def test_progress_for_lesson_without_rows_uses_lesson_sizes():
    lesson = Lesson(id=7, season_id=1, order_index=1, title="Lesson 7",
                    stage_units={StageKind.MEDITE: 3, StageKind.RESPONDA: 5})

    progress = unlocks.progress_for_lesson(lesson, {})

    assert [s.total_units for s in progress.stages] == [1, 3, 5]


def test_progress_for_lesson_resizes_stored_rows():
    lesson = Lesson(id=7, season_id=1, order_index=1, title="Lesson 7",
                    stage_units={StageKind.MEDITE: 3, StageKind.RESPONDA: 5})
    stored = LessonProgress(lesson_id=7, stages=[
        StageProgress(stage=StageKind.ESTUDE, completed=True, completed_units=1, total_units=1),
        StageProgress(stage=StageKind.MEDITE, completed=True, completed_units=1, total_units=1),
        StageProgress(stage=StageKind.RESPONDA, completed_units=2, total_units=1),
    ])

    progress = unlocks.progress_for_lesson(lesson, {7: stored})

    medite = progress.stage(StageKind.MEDITE)
    responda = progress.stage(StageKind.RESPONDA)
    assert (medite.completed_units, medite.total_units) == (3, 3)
    assert (responda.completed_units, responda.total_units) == (2, 5)
    assert not responda.completed
