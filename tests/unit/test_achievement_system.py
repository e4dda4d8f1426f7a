"""
Unit tests for Achievement System
"""
from datetime import datetime

import pytest

from deoglory.models.achievement import Achievement, AchievementCategory
from deoglory.progression import achievement_system
from deoglory.progression.achievement_system import (
    DEFAULT_ACHIEVEMENTS,
    EVENT_EARLY_BIRD,
    EVENT_NIGHT_OWL,
    EVENT_PERFECT_CHALLENGE,
    find_new_achievements,
    requirement_met,
    summarize_rewards,
    time_of_day_events,
)


def by_code(code):
    return next(a for a in DEFAULT_ACHIEVEMENTS if a.code == code)


def test_catalog_codes_unique():
    codes = [a.code for a in DEFAULT_ACHIEVEMENTS]
    assert len(codes) == len(set(codes))


def test_catalog_covers_every_category():
    assert {a.category for a in DEFAULT_ACHIEVEMENTS} == set(AchievementCategory)


# ============================================================================
# Requirement Tests
# ============================================================================

@pytest.mark.parametrize("code,fields,expected", [
    ("first_lesson", {"lessons_completed": 1}, True),
    ("first_lesson", {"lessons_completed": 0}, False),
    ("streak_7", {"current_streak": 7}, True),
    ("streak_7", {"current_streak": 6}, False),
    ("xp_500", {"total_xp": 500}, True),
    ("level_5", {"current_level": 4}, False),
    ("level_5", {"current_level": 5}, True),
])
def test_requirement_met(make_profile, code, fields, expected):
    assert requirement_met(by_code(code), make_profile(**fields)) is expected


def test_event_requirement_needs_event(make_profile):
    profile = make_profile()

    assert not requirement_met(by_code("perfect_challenge"), profile)
    assert requirement_met(by_code("perfect_challenge"), profile, {EVENT_PERFECT_CHALLENGE})


def test_unknown_requirement_never_unlocks(make_profile):
    achievement = Achievement(
        code="prayer_10", name="Prayer", description="", icon="pray",
        category=AchievementCategory.SPECIAL, requirement={"prayers": 10},
    )

    assert requirement_met(achievement, make_profile(total_xp=10**6)) is False


# ============================================================================
# Evaluation Tests
# ============================================================================

def test_find_new_achievements_skips_unlocked(make_profile):
    profile = make_profile(lessons_completed=5, total_xp=120)

    found = find_new_achievements(DEFAULT_ACHIEVEMENTS, profile, {"first_lesson"})

    assert {a.code for a in found} == {"lessons_5", "xp_100"}


def test_find_new_achievements_with_events(make_profile):
    found = find_new_achievements(DEFAULT_ACHIEVEMENTS, make_profile(), set(), {EVENT_NIGHT_OWL})

    assert [a.code for a in found] == ["night_owl"]


def test_summarize_rewards():
    summary = summarize_rewards([by_code("streak_30"), by_code("first_lesson")])

    assert summary == {"count": 2, "xp": 105, "crystals": 5, "codes": ["streak_30", "first_lesson"]}


@pytest.mark.parametrize("hour,events", [
    (5, {EVENT_EARLY_BIRD}),
    (7, set()),
    (12, set()),
    (21, set()),
    (22, {EVENT_NIGHT_OWL}),
])
def test_time_of_day_events(hour, events):
    assert time_of_day_events(datetime(2026, 3, 10, hour, 30)) == events


def test_early_bird_boundary_constant():
    assert achievement_system.EARLY_BIRD_BEFORE_HOUR == 7
