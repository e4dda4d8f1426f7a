"""
Achievement System

Evaluates the achievement catalog against a member's progress snapshot.

Requirement shapes (one key per achievement):
- {"lessons": n}  lessons completed
- {"streak": n}   current streak in days
- {"xp": n}       total XP
- {"level": n}    current level
- {"event": name} special one-off events raised by the engine

Evaluation is pure; granting is done by the service, which only pays
rewards when the unlock row was freshly inserted.
"""

from typing import Dict, Any, Iterable, Optional
from datetime import datetime
import logging

from deoglory.models.achievement import Achievement, AchievementCategory
from deoglory.models.profile import StudyProfile

logger = logging.getLogger(__name__)

# Special events
EVENT_PERFECT_CHALLENGE = "perfect_challenge"
EVENT_SEASON_MASTERED = "season_mastered"
EVENT_STREAK_RECOVERED = "streak_recovered"
EVENT_EARLY_BIRD = "early_bird"
EVENT_NIGHT_OWL = "night_owl"

EARLY_BIRD_BEFORE_HOUR = 7
NIGHT_OWL_FROM_HOUR = 22


def _achievement(code, name, description, icon, category, requirement, xp_reward, crystal_reward=0):
    return Achievement(
        code=code,
        name=name,
        description=description,
        icon=icon,
        category=category,
        requirement=requirement,
        xp_reward=xp_reward,
        crystal_reward=crystal_reward,
    )


DEFAULT_ACHIEVEMENTS: list[Achievement] = [
    # Streak
    _achievement("streak_3", "Iniciante Dedicado", "Mantenha uma sequencia de 3 dias de estudo", "flame",
                 AchievementCategory.STREAK, {"streak": 3}, 10),
    _achievement("streak_7", "Semana Perfeita", "Mantenha uma sequencia de 7 dias de estudo", "flame",
                 AchievementCategory.STREAK, {"streak": 7}, 25),
    _achievement("streak_14", "Duas Semanas de Fe", "Mantenha uma sequencia de 14 dias de estudo", "flame",
                 AchievementCategory.STREAK, {"streak": 14}, 50),
    _achievement("streak_30", "Mes de Fe", "Mantenha uma sequencia de 30 dias de estudo", "flame",
                 AchievementCategory.STREAK, {"streak": 30}, 100, 5),
    _achievement("streak_100", "Centuriao da Fe", "Mantenha uma sequencia de 100 dias de estudo", "crown",
                 AchievementCategory.STREAK, {"streak": 100}, 500, 20),

    # Lessons
    _achievement("first_lesson", "Primeiro Passo", "Complete sua primeira licao", "book",
                 AchievementCategory.LESSONS, {"lessons": 1}, 5),
    _achievement("lessons_5", "Estudante Aplicado", "Complete 5 licoes", "book-open",
                 AchievementCategory.LESSONS, {"lessons": 5}, 20),
    _achievement("lessons_10", "Discipulo Dedicado", "Complete 10 licoes", "graduation-cap",
                 AchievementCategory.LESSONS, {"lessons": 10}, 50),
    _achievement("lessons_25", "Estudioso da Palavra", "Complete 25 licoes", "trophy",
                 AchievementCategory.LESSONS, {"lessons": 25}, 100),
    _achievement("lessons_50", "Mestre da Palavra", "Complete 50 licoes", "crown",
                 AchievementCategory.LESSONS, {"lessons": 50}, 250, 10),

    # XP
    _achievement("xp_100", "Primeira Centena", "Acumule 100 XP", "zap",
                 AchievementCategory.XP, {"xp": 100}, 10),
    _achievement("xp_500", "Meio Milhar", "Acumule 500 XP", "zap",
                 AchievementCategory.XP, {"xp": 500}, 25),
    _achievement("xp_1000", "Mil Pontos de Fe", "Acumule 1000 XP", "zap",
                 AchievementCategory.XP, {"xp": 1000}, 50),
    _achievement("xp_5000", "Guerreiro da Fe", "Acumule 5000 XP", "shield",
                 AchievementCategory.XP, {"xp": 5000}, 150),
    _achievement("xp_10000", "Campeao da Fe", "Acumule 10000 XP", "medal",
                 AchievementCategory.XP, {"xp": 10000}, 300),

    # Level
    _achievement("level_5", "Aprendiz das Escrituras", "Alcance o nivel 5", "trending-up",
                 AchievementCategory.LEVEL, {"level": 5}, 25),
    _achievement("level_10", "Estudante Dedicado", "Alcance o nivel 10", "trending-up",
                 AchievementCategory.LEVEL, {"level": 10}, 50),
    _achievement("level_20", "Discipulo Fiel", "Alcance o nivel 20", "book-open",
                 AchievementCategory.LEVEL, {"level": 20}, 100),
    _achievement("level_40", "Mestre dos Estudos", "Alcance o nivel 40", "award",
                 AchievementCategory.LEVEL, {"level": 40}, 200),

    # Special
    _achievement("perfect_challenge", "Perfeito!", "Acerte todas as perguntas de um Desafio Final", "star",
                 AchievementCategory.SPECIAL, {"event": EVENT_PERFECT_CHALLENGE}, 50),
    _achievement("season_mastered", "Dominio da Temporada", "Alcance a maestria em uma temporada", "award",
                 AchievementCategory.SPECIAL, {"event": EVENT_SEASON_MASTERED}, 50, 5),
    _achievement("streak_recovered", "Chama Reacesa", "Recupere sua sequencia com cristais", "flame",
                 AchievementCategory.SPECIAL, {"event": EVENT_STREAK_RECOVERED}, 10),
    _achievement("early_bird", "Madrugador", "Estude antes das 7h da manha", "sunrise",
                 AchievementCategory.SPECIAL, {"event": EVENT_EARLY_BIRD}, 15),
    _achievement("night_owl", "Coruja Noturna", "Estude depois das 22h", "moon",
                 AchievementCategory.SPECIAL, {"event": EVENT_NIGHT_OWL}, 15),
]


def time_of_day_events(local_time: datetime) -> set[str]:
    """Special events implied by when (member-local) the study happened"""
    events = set()
    if local_time.hour < EARLY_BIRD_BEFORE_HOUR:
        events.add(EVENT_EARLY_BIRD)
    if local_time.hour >= NIGHT_OWL_FROM_HOUR:
        events.add(EVENT_NIGHT_OWL)
    return events


def requirement_met(
    achievement: Achievement,
    profile: StudyProfile,
    events: Optional[Iterable[str]] = None,
) -> bool:
    """
    Whether the profile satisfies an achievement requirement

    Unknown requirement keys never unlock, so catalog rows authored for
    features this engine does not track stay locked.
    """
    requirement = achievement.requirement
    events = set(events or ())

    if "lessons" in requirement:
        return profile.lessons_completed >= int(requirement["lessons"])
    if "streak" in requirement:
        return profile.current_streak >= int(requirement["streak"])
    if "xp" in requirement:
        return profile.total_xp >= int(requirement["xp"])
    if "level" in requirement:
        return profile.current_level >= int(requirement["level"])
    if "event" in requirement:
        return requirement["event"] in events

    logger.debug(f"Achievement {achievement.code} has unsupported requirement {requirement}")
    return False


def find_new_achievements(
    catalog: Iterable[Achievement],
    profile: StudyProfile,
    unlocked_codes: set[str],
    events: Optional[Iterable[str]] = None,
) -> list[Achievement]:
    """Catalog entries the member now qualifies for and has not unlocked yet"""
    events = set(events or ())
    return [
        achievement
        for achievement in catalog
        if achievement.code not in unlocked_codes and requirement_met(achievement, profile, events)
    ]


def summarize_rewards(achievements: Iterable[Achievement]) -> Dict[str, Any]:
    """Total rewards of a batch of freshly unlocked achievements"""
    achievements = list(achievements)
    return {
        "count": len(achievements),
        "xp": sum(a.xp_reward for a in achievements),
        "crystals": sum(a.crystal_reward for a in achievements),
        "codes": [a.code for a in achievements],
    }
