"""
Study progression rules

Pure functions over pydantic models; persistence and transactions live in
deoglory.services.study_service.

- xp_system: XP to level mapping
- stage_machine: estude -> medite -> responda per lesson
- unlocks: season and lesson gates, resolved status tree
- streak_system: daily streak, crystal-priced recovery, freezes, milestones
- crystal_rewards: crystal bonuses for finishing lessons
- final_challenge: timed mastery quiz with signed continuation token
- achievement_system: achievement catalog evaluation
"""

from deoglory.progression.xp_system import apply_xp, calculate_level_from_xp, level_for_xp
from deoglory.progression.stage_machine import complete_stage, record_unit_progress
from deoglory.progression.unlocks import resolve_progress_tree
from deoglory.progression.streak_system import evaluate_streak, tick_activity, apply_recovery, apply_forfeit, buy_freeze
from deoglory.progression.crystal_rewards import lesson_rewards
from deoglory.progression.final_challenge import finalize_attempt, issue_token, decode_token
from deoglory.progression.achievement_system import find_new_achievements, DEFAULT_ACHIEVEMENTS

__all__ = [
    "apply_xp",
    "calculate_level_from_xp",
    "level_for_xp",
    "complete_stage",
    "record_unit_progress",
    "resolve_progress_tree",
    "evaluate_streak",
    "tick_activity",
    "apply_recovery",
    "apply_forfeit",
    "buy_freeze",
    "lesson_rewards",
    "finalize_attempt",
    "issue_token",
    "decode_token",
    "find_new_achievements",
    "DEFAULT_ACHIEVEMENTS",
]
