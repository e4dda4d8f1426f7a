"""Per-member lesson and season progress queries"""
import logging
from typing import Optional

import psycopg

from deoglory.models.content import StageKind, STAGE_ORDER
from deoglory.models.progress import LessonProgress, SeasonProgress, StageProgress

logger = logging.getLogger(__name__)


async def get_lesson_progress_map(
    conn: psycopg.AsyncConnection,
    user_id: str
) -> dict[int, LessonProgress]:
    """
    All stage rows of a member, folded into LessonProgress per lesson

    Lessons without rows are absent and stages without a row get default
    sizes; stage sizes are owned by the lesson, so callers go through
    unlocks.progress_for_lesson() before using the result.
    """
    async with conn.cursor() as cur:
        await cur.execute(
            """
            SELECT lesson_id, stage, completed, completed_units, total_units, completed_at
            FROM stage_progress
            WHERE user_id = %s
            """,
            (user_id,)
        )
        rows = await cur.fetchall()

    by_lesson: dict[int, dict[StageKind, StageProgress]] = {}
    for row in rows:
        kind = StageKind(row["stage"])
        by_lesson.setdefault(row["lesson_id"], {})[kind] = StageProgress(
            stage=kind,
            completed=row["completed"],
            completed_units=row["completed_units"],
            total_units=row["total_units"],
            completed_at=row["completed_at"],
        )

    return {
        lesson_id: LessonProgress(
            lesson_id=lesson_id,
            stages=[stages.get(kind, StageProgress(stage=kind)) for kind in STAGE_ORDER],
        )
        for lesson_id, stages in by_lesson.items()
    }


async def save_stage_progress(
    conn: psycopg.AsyncConnection,
    user_id: str,
    lesson_id: int,
    stage: StageProgress
) -> None:
    async with conn.cursor() as cur:
        await cur.execute(
            """
            INSERT INTO stage_progress
                (user_id, lesson_id, stage, completed, completed_units, total_units, completed_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id, lesson_id, stage) DO UPDATE SET
                completed = EXCLUDED.completed,
                completed_units = EXCLUDED.completed_units,
                total_units = EXCLUDED.total_units,
                completed_at = EXCLUDED.completed_at
            """,
            (
                user_id,
                lesson_id,
                stage.stage.value,
                stage.completed,
                stage.completed_units,
                stage.total_units,
                stage.completed_at,
            )
        )


async def mark_lesson_completed(
    conn: psycopg.AsyncConnection,
    user_id: str,
    lesson_id: int,
    xp_awarded: int
) -> bool:
    """
    Record the lesson completion

    Returns True only for the first completion, which is the one that
    earns the lesson XP.
    """
    async with conn.cursor() as cur:
        await cur.execute(
            """
            INSERT INTO lesson_completions (user_id, lesson_id, xp_awarded)
            VALUES (%s, %s, %s)
            ON CONFLICT (user_id, lesson_id) DO NOTHING
            RETURNING lesson_id
            """,
            (user_id, lesson_id, xp_awarded)
        )
        return await cur.fetchone() is not None


async def get_season_progress_map(
    conn: psycopg.AsyncConnection,
    user_id: str
) -> dict[int, SeasonProgress]:
    async with conn.cursor() as cur:
        await cur.execute(
            """
            SELECT user_id, season_id, final_challenge_completed, final_challenge_perfect,
                   is_mastered, best_score
            FROM season_progress
            WHERE user_id = %s
            """,
            (user_id,)
        )
        rows = await cur.fetchall()
        return {row["season_id"]: SeasonProgress(**row) for row in rows}


async def get_season_progress(
    conn: psycopg.AsyncConnection,
    user_id: str,
    season_id: int
) -> Optional[SeasonProgress]:
    async with conn.cursor() as cur:
        await cur.execute(
            """
            SELECT user_id, season_id, final_challenge_completed, final_challenge_perfect,
                   is_mastered, best_score
            FROM season_progress
            WHERE user_id = %s AND season_id = %s
            """,
            (user_id, season_id)
        )
        row = await cur.fetchone()
        return SeasonProgress(**row) if row else None


async def save_season_progress(conn: psycopg.AsyncConnection, progress: SeasonProgress) -> None:
    async with conn.cursor() as cur:
        await cur.execute(
            """
            INSERT INTO season_progress
                (user_id, season_id, final_challenge_completed, final_challenge_perfect, is_mastered, best_score)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id, season_id) DO UPDATE SET
                final_challenge_completed = EXCLUDED.final_challenge_completed,
                final_challenge_perfect = EXCLUDED.final_challenge_perfect,
                is_mastered = EXCLUDED.is_mastered,
                best_score = EXCLUDED.best_score,
                updated_at = CURRENT_TIMESTAMP
            """,
            (
                progress.user_id,
                progress.season_id,
                progress.final_challenge_completed,
                progress.final_challenge_perfect,
                progress.is_mastered,
                progress.best_score,
            )
        )
