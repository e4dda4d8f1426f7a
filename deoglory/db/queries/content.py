"""Content tree queries: seasons, lessons and Final Challenges"""
import logging
from typing import Optional

import psycopg

from deoglory.models.content import FinalChallenge, Lesson, Question, Season, StageKind

logger = logging.getLogger(__name__)


def _lesson_from_row(row: dict) -> Lesson:
    return Lesson(
        id=row["id"],
        season_id=row["season_id"],
        order_index=row["order_index"],
        lesson_number=row["lesson_number"],
        title=row["title"],
        xp_reward=row["xp_reward"],
        stage_units={
            StageKind.ESTUDE: row["estude_units"],
            StageKind.MEDITE: row["medite_units"],
            StageKind.RESPONDA: row["responda_units"],
        },
    )


async def get_seasons(conn: psycopg.AsyncConnection) -> list[Season]:
    """Member-visible seasons ordered by order_index (drafts excluded)"""
    async with conn.cursor() as cur:
        await cur.execute(
            """
            SELECT id, title, order_index, status, total_lessons, starts_at, ends_at,
                   force_unlocked, is_ended
            FROM seasons
            WHERE status <> 'draft'
            ORDER BY order_index, id
            """
        )
        rows = await cur.fetchall()
        return [Season(**row) for row in rows]


async def get_lessons_by_season(conn: psycopg.AsyncConnection) -> dict[int, list[Lesson]]:
    """All lessons of member-visible seasons, grouped by season"""
    async with conn.cursor() as cur:
        await cur.execute(
            """
            SELECT l.id, l.season_id, l.order_index, l.lesson_number, l.title, l.xp_reward,
                   l.estude_units, l.medite_units, l.responda_units
            FROM lessons l
            JOIN seasons s ON s.id = l.season_id
            WHERE s.status <> 'draft'
            ORDER BY l.season_id, l.order_index, l.lesson_number, l.id
            """
        )
        rows = await cur.fetchall()

    grouped: dict[int, list[Lesson]] = {}
    for row in rows:
        lesson = _lesson_from_row(row)
        grouped.setdefault(lesson.season_id, []).append(lesson)
    return grouped


async def get_lesson(conn: psycopg.AsyncConnection, lesson_id: int) -> Optional[Lesson]:
    async with conn.cursor() as cur:
        await cur.execute(
            """
            SELECT id, season_id, order_index, lesson_number, title, xp_reward,
                   estude_units, medite_units, responda_units
            FROM lessons
            WHERE id = %s
            """,
            (lesson_id,)
        )
        row = await cur.fetchone()
        return _lesson_from_row(row) if row else None


async def get_active_challenge_seasons(conn: psycopg.AsyncConnection) -> set[int]:
    """Season ids that have an active Final Challenge"""
    async with conn.cursor() as cur:
        await cur.execute("SELECT season_id FROM final_challenges WHERE is_active = TRUE")
        rows = await cur.fetchall()
        return {row["season_id"] for row in rows}


async def get_final_challenge(conn: psycopg.AsyncConnection, season_id: int) -> Optional[FinalChallenge]:
    async with conn.cursor() as cur:
        await cur.execute(
            """
            SELECT id, season_id, title, description, questions, question_count,
                   time_limit_seconds, xp_reward, perfect_xp_bonus, is_active
            FROM final_challenges
            WHERE season_id = %s
            """,
            (season_id,)
        )
        row = await cur.fetchone()

    if not row:
        return None

    data = dict(row)
    data["questions"] = [Question(**q) for q in data["questions"] or []]
    return FinalChallenge(**data)
