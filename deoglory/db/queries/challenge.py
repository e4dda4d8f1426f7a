"""Final Challenge attempt queries"""
import json
import logging
from typing import Optional

import psycopg

from deoglory.models.challenge import ChallengeAttempt
from deoglory.models.content import Question

logger = logging.getLogger(__name__)

ATTEMPT_COLUMNS = """
    id, user_id, season_id, challenge_id, questions, question_set_hash,
    started_at, expires_at, answers, scored_at, correct_count, score,
    is_perfect, is_mastered, xp_earned, xp_awarded
"""


def _attempt_from_row(row: dict) -> ChallengeAttempt:
    data = dict(row)
    data["questions"] = [Question(**q) for q in data["questions"]]
    data["answers"] = data["answers"] or {}
    data["score"] = float(data["score"])
    return ChallengeAttempt(**data)


async def get_attempt(
    conn: psycopg.AsyncConnection,
    attempt_id: str,
    for_update: bool = False
) -> Optional[ChallengeAttempt]:
    lock = " FOR UPDATE" if for_update else ""
    async with conn.cursor() as cur:
        await cur.execute(
            f"SELECT {ATTEMPT_COLUMNS} FROM challenge_attempts WHERE id = %s{lock}",
            (attempt_id,)
        )
        row = await cur.fetchone()
        return _attempt_from_row(row) if row else None


async def get_open_attempt(
    conn: psycopg.AsyncConnection,
    user_id: str,
    season_id: int
) -> Optional[ChallengeAttempt]:
    """The member's unscored attempt for a season, if any"""
    async with conn.cursor() as cur:
        await cur.execute(
            f"""
            SELECT {ATTEMPT_COLUMNS}
            FROM challenge_attempts
            WHERE user_id = %s AND season_id = %s AND scored_at IS NULL
            FOR UPDATE
            """,
            (user_id, season_id)
        )
        row = await cur.fetchone()
        return _attempt_from_row(row) if row else None


async def create_attempt(conn: psycopg.AsyncConnection, attempt: ChallengeAttempt) -> None:
    async with conn.cursor() as cur:
        await cur.execute(
            """
            INSERT INTO challenge_attempts
                (id, user_id, season_id, challenge_id, questions, question_set_hash,
                 started_at, expires_at, answers)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                attempt.id,
                attempt.user_id,
                attempt.season_id,
                attempt.challenge_id,
                json.dumps([q.model_dump() for q in attempt.questions]),
                attempt.question_set_hash,
                attempt.started_at,
                attempt.expires_at,
                json.dumps(attempt.answers),
            )
        )
    logger.info(f"Created challenge attempt {attempt.id} for user {attempt.user_id}")


async def save_answers(conn: psycopg.AsyncConnection, attempt: ChallengeAttempt) -> None:
    async with conn.cursor() as cur:
        await cur.execute(
            "UPDATE challenge_attempts SET answers = %s WHERE id = %s AND scored_at IS NULL",
            (json.dumps(attempt.answers), attempt.id)
        )


async def save_scored_attempt(conn: psycopg.AsyncConnection, attempt: ChallengeAttempt) -> bool:
    """
    Persist the score; the scored_at guard makes scoring happen once

    Returns False when another request scored the attempt first.
    """
    async with conn.cursor() as cur:
        await cur.execute(
            """
            UPDATE challenge_attempts
            SET answers = %s,
                scored_at = %s,
                correct_count = %s,
                score = %s,
                is_perfect = %s,
                is_mastered = %s,
                xp_earned = %s,
                xp_awarded = %s
            WHERE id = %s AND scored_at IS NULL
            """,
            (
                json.dumps(attempt.answers),
                attempt.scored_at,
                attempt.correct_count,
                attempt.score,
                attempt.is_perfect,
                attempt.is_mastered,
                attempt.xp_earned,
                attempt.xp_awarded,
                attempt.id,
            )
        )
        return cur.rowcount > 0
