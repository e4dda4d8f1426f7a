"""Achievement catalog and unlock queries"""
import json
import logging
from typing import Optional

import psycopg

from deoglory.models.achievement import Achievement, UserAchievement

logger = logging.getLogger(__name__)


async def get_all_achievements(conn: psycopg.AsyncConnection) -> list[Achievement]:
    async with conn.cursor() as cur:
        await cur.execute(
            """
            SELECT id, code, name, description, icon, category, requirement,
                   xp_reward, crystal_reward, is_secret
            FROM achievements
            ORDER BY category, id
            """
        )
        rows = await cur.fetchall()
        return [Achievement(**row) for row in rows]


async def seed_achievements(conn: psycopg.AsyncConnection, catalog: list[Achievement]) -> int:
    """Insert catalog entries that do not exist yet; returns how many were added"""
    added = 0
    async with conn.cursor() as cur:
        for achievement in catalog:
            await cur.execute(
                """
                INSERT INTO achievements
                    (code, name, description, icon, category, requirement, xp_reward, crystal_reward, is_secret)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (code) DO NOTHING
                """,
                (
                    achievement.code,
                    achievement.name,
                    achievement.description,
                    achievement.icon,
                    achievement.category.value,
                    json.dumps(achievement.requirement),
                    achievement.xp_reward,
                    achievement.crystal_reward,
                    achievement.is_secret,
                )
            )
            added += cur.rowcount
    if added:
        logger.info(f"Seeded {added} achievements")
    return added


async def get_unlocked_codes(conn: psycopg.AsyncConnection, user_id: str) -> set[str]:
    async with conn.cursor() as cur:
        await cur.execute(
            """
            SELECT a.code
            FROM user_achievements ua
            JOIN achievements a ON a.id = ua.achievement_id
            WHERE ua.user_id = %s
            """,
            (user_id,)
        )
        rows = await cur.fetchall()
        return {row["code"] for row in rows}


async def unlock_achievement(
    conn: psycopg.AsyncConnection,
    user_id: str,
    achievement_id: Optional[int]
) -> bool:
    """Returns True only when this call inserted the unlock row"""
    async with conn.cursor() as cur:
        await cur.execute(
            """
            INSERT INTO user_achievements (user_id, achievement_id)
            VALUES (%s, %s)
            ON CONFLICT (user_id, achievement_id) DO NOTHING
            RETURNING achievement_id
            """,
            (user_id, achievement_id)
        )
        return await cur.fetchone() is not None


async def get_user_achievements(conn: psycopg.AsyncConnection, user_id: str) -> list[UserAchievement]:
    """Unlocked achievements, most recent first"""
    async with conn.cursor() as cur:
        await cur.execute(
            """
            SELECT ua.user_id, a.code, a.name, ua.unlocked_at, a.xp_reward, a.crystal_reward
            FROM user_achievements ua
            JOIN achievements a ON a.id = ua.achievement_id
            WHERE ua.user_id = %s
            ORDER BY ua.unlocked_at DESC
            """,
            (user_id,)
        )
        rows = await cur.fetchall()
        return [UserAchievement(**row) for row in rows]
