"""
Lesson Crystal Rewards

Crystals earned by finishing lessons, on top of the lesson XP. Paid only
for the first completion of a lesson.

Reward Rules:
- first_lesson_of_day: first lesson finished on a calendar day
- perfect_lesson: lesson finished without a mistake
- lesson_streak_3/5/7: 3rd, 5th and 7th lesson finished on the same day
"""

from typing import Dict, Any
from datetime import date
import logging

from deoglory.models.profile import StudyProfile

logger = logging.getLogger(__name__)

FIRST_LESSON_OF_DAY_CRYSTALS = 1
PERFECT_LESSON_CRYSTALS = 2

# lessons finished today -> crystals
LESSON_STREAK_CRYSTALS: Dict[int, int] = {
    3: 2,
    5: 3,
    7: 5,
}


def count_lesson(profile: StudyProfile, today: date) -> int:
    """Bump the per-day lesson counter, restarting it on a new calendar day"""
    if profile.last_lesson_date != today:
        profile.lessons_completed_today = 0
        profile.last_lesson_date = today
    profile.lessons_completed_today += 1
    return profile.lessons_completed_today


def lesson_rewards(profile: StudyProfile, today: date, perfect: bool = False) -> list[Dict[str, Any]]:
    """
    Count a first-time lesson completion and list the crystal bonuses it earns

    Returns:
        [{'type': str, 'crystals': int}, ...] in ledger order
    """
    today_count = count_lesson(profile, today)

    rewards = []
    if today_count == 1:
        rewards.append({"type": "first_lesson_of_day", "crystals": FIRST_LESSON_OF_DAY_CRYSTALS})
    if perfect:
        rewards.append({"type": "perfect_lesson", "crystals": PERFECT_LESSON_CRYSTALS})
    if today_count in LESSON_STREAK_CRYSTALS:
        rewards.append({"type": f"lesson_streak_{today_count}", "crystals": LESSON_STREAK_CRYSTALS[today_count]})

    if rewards:
        logger.debug(f"User {profile.user_id} lesson #{today_count} today earns {rewards}")
    return rewards
