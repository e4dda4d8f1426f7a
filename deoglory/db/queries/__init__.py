"""
Database queries, grouped by concern.

Every function takes the caller's connection so that one service call
runs inside one transaction.

Module organization:
- study.py: Study profiles, XP/crystal ledgers, streak recovery, milestones
- content.py: Seasons, lessons, Final Challenges
- progress.py: Stage progress, lesson completions, season outcomes
- challenge.py: Final Challenge attempts
- achievements.py: Achievement catalog and unlocks
"""

from deoglory.db.queries import achievements, challenge, content, progress, study

__all__ = [
    "achievements",
    "challenge",
    "content",
    "progress",
    "study",
]
