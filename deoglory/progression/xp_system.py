"""
XP and Leveling System

Maps cumulative XP to a level using a progressive, tiered cost table.

Leveling Curve (XP needed to leave a level):
- Level 1-5: 500 XP per level
- Level 6-10: 750 XP per level
- Level 11-20: 1000 XP per level
- Level 21-30: 1500 XP per level
- Level 31+: 2000 XP per level

The cached level on a profile is always recomputed from total XP,
never incremented on its own.
"""

from typing import Dict, Any
import logging

from deoglory.exceptions import ValidationError
from deoglory.models.profile import StudyProfile

logger = logging.getLogger(__name__)

# (highest level of the tier, cost per level); levels past the table use LAST_TIER_COST
LEVEL_TIERS: tuple[tuple[int, int], ...] = (
    (5, 500),
    (10, 750),
    (20, 1000),
    (30, 1500),
)
LAST_TIER_COST = 2000


def xp_cost_for_level(level: int) -> int:
    """XP needed to go from `level` to `level + 1`"""
    for max_level, cost in LEVEL_TIERS:
        if level <= max_level:
            return cost
    return LAST_TIER_COST


def xp_threshold_for_level(level: int) -> int:
    """Cumulative XP required to reach `level` (level 1 needs 0)"""
    total = 0
    for lvl in range(1, max(level, 1)):
        total += xp_cost_for_level(lvl)
    return total


def level_for_xp(xp: int) -> int:
    """
    Level for a cumulative XP amount

    Walks levels upward while the next level's threshold is still covered.
    Reaching a threshold exactly advances the level.
    """
    level = 1
    threshold = 0
    xp = max(xp, 0)
    while threshold + xp_cost_for_level(level) <= xp:
        threshold += xp_cost_for_level(level)
        level += 1
    return level


def calculate_level_from_xp(total_xp: int) -> Dict[str, Any]:
    """
    Calculate level and in-level progress from total XP

    Returns:
        {
            'current_level': int,
            'xp_in_current_level': int,
            'xp_to_next_level': int,
            'total_xp_for_next_level': int,
            'progress_percent': float
        }
    """
    level = level_for_xp(total_xp)
    floor = xp_threshold_for_level(level)
    ceiling = floor + xp_cost_for_level(level)
    xp_in_level = max(total_xp, 0) - floor

    return {
        "current_level": level,
        "xp_in_current_level": xp_in_level,
        "xp_to_next_level": ceiling - max(total_xp, 0),
        "total_xp_for_next_level": ceiling,
        "progress_percent": round(xp_in_level * 100 / xp_cost_for_level(level), 2),
    }


def apply_xp(profile: StudyProfile, amount: int) -> Dict[str, Any]:
    """
    Credit XP to a profile in place and resync its cached level

    Returns:
        {
            'xp_awarded': int,
            'old_total_xp': int,
            'new_total_xp': int,
            'old_level': int,
            'new_level': int,
            'leveled_up': bool
        }
    """
    if amount < 0:
        raise ValidationError("XP amount cannot be negative", field="amount", value=amount, user_id=profile.user_id)

    old_total = profile.total_xp
    old_level = profile.current_level

    profile.total_xp = old_total + amount
    profile.current_level = level_for_xp(profile.total_xp)
    leveled_up = profile.current_level > old_level

    if leveled_up:
        logger.info(f"User {profile.user_id} leveled up from {old_level} to {profile.current_level}!")

    return {
        "xp_awarded": amount,
        "old_total_xp": old_total,
        "new_total_xp": profile.total_xp,
        "old_level": old_level,
        "new_level": profile.current_level,
        "leveled_up": leveled_up,
    }
