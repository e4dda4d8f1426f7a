"""Study profile, ledger and streak recovery queries"""
import logging
from typing import Optional

import psycopg

from deoglory.exceptions import ConcurrentUpdateError
from deoglory.models.profile import StreakRecoveryRequest, StudyProfile

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = """
    user_id, total_xp, current_level, current_streak, longest_streak,
    hearts, hearts_max, crystals, last_activity_date, timezone,
    lessons_completed, streak_freezes_available, total_streak_freeze_used,
    lessons_completed_today, last_lesson_date, version
"""


# ==========================================
# Study Profile
# ==========================================

async def get_profile(
    conn: psycopg.AsyncConnection,
    user_id: str,
    for_update: bool = False
) -> Optional[StudyProfile]:
    """
    Load a member's study profile

    Args:
        conn: Connection inside the caller's transaction
        user_id: Member identifier
        for_update: Lock the row until the transaction ends
    """
    lock = " FOR UPDATE" if for_update else ""
    async with conn.cursor() as cur:
        await cur.execute(
            f"SELECT {PROFILE_COLUMNS} FROM study_profiles WHERE user_id = %s{lock}",
            (user_id,)
        )
        row = await cur.fetchone()
        return StudyProfile(**row) if row else None


async def create_profile(
    conn: psycopg.AsyncConnection,
    user_id: str,
    timezone: str
) -> StudyProfile:
    """Insert a fresh profile; a concurrent insert for the same member wins silently"""
    async with conn.cursor() as cur:
        await cur.execute(
            """
            INSERT INTO study_profiles (user_id, timezone)
            VALUES (%s, %s)
            ON CONFLICT (user_id) DO NOTHING
            """,
            (user_id, timezone)
        )
    logger.info(f"Created study profile for user {user_id}")
    return await get_profile(conn, user_id, for_update=True)


async def get_or_create_profile(
    conn: psycopg.AsyncConnection,
    user_id: str,
    timezone: str,
    for_update: bool = True
) -> StudyProfile:
    profile = await get_profile(conn, user_id, for_update=for_update)
    if profile is None:
        profile = await create_profile(conn, user_id, timezone)
    return profile


async def update_profile(conn: psycopg.AsyncConnection, profile: StudyProfile) -> StudyProfile:
    """
    Write the profile back, guarded by its version

    Raises:
        ConcurrentUpdateError: the row changed since it was read
    """
    async with conn.cursor() as cur:
        await cur.execute(
            """
            UPDATE study_profiles
            SET total_xp = %s,
                current_level = %s,
                current_streak = %s,
                longest_streak = %s,
                crystals = %s,
                last_activity_date = %s,
                lessons_completed = %s,
                streak_freezes_available = %s,
                total_streak_freeze_used = %s,
                lessons_completed_today = %s,
                last_lesson_date = %s,
                version = version + 1,
                updated_at = CURRENT_TIMESTAMP
            WHERE user_id = %s AND version = %s
            RETURNING version
            """,
            (
                profile.total_xp,
                profile.current_level,
                profile.current_streak,
                profile.longest_streak,
                profile.crystals,
                profile.last_activity_date,
                profile.lessons_completed,
                profile.streak_freezes_available,
                profile.total_streak_freeze_used,
                profile.lessons_completed_today,
                profile.last_lesson_date,
                profile.user_id,
                profile.version,
            )
        )
        row = await cur.fetchone()

    if not row:
        raise ConcurrentUpdateError(
            f"Study profile {profile.user_id} changed since version {profile.version}",
            user_id=profile.user_id,
            operation="update_profile",
        )
    return profile.model_copy(update={"version": row["version"]})


# ==========================================
# Ledgers
# ==========================================

async def add_xp_transaction(
    conn: psycopg.AsyncConnection,
    user_id: str,
    amount: int,
    source: str,
    source_id: Optional[str],
    description: str,
    balance_after: int
) -> int:
    """
    Append to the XP ledger

    Args:
        source: 'lesson', 'final_challenge', 'achievement', 'streak_milestone'

    Returns:
        Transaction ID
    """
    async with conn.cursor() as cur:
        await cur.execute(
            """
            INSERT INTO xp_transactions (user_id, amount, source, source_id, description, balance_after)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (user_id, amount, source, source_id, description, balance_after)
        )
        row = await cur.fetchone()
        return row["id"]


async def add_crystal_transaction(
    conn: psycopg.AsyncConnection,
    user_id: str,
    amount: int,
    source: str,
    source_id: Optional[str],
    description: str,
    balance_after: int
) -> int:
    """Append to the crystal ledger (negative amount for spending)"""
    async with conn.cursor() as cur:
        await cur.execute(
            """
            INSERT INTO crystal_transactions (user_id, amount, source, source_id, description, balance_after)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (user_id, amount, source, source_id, description, balance_after)
        )
        row = await cur.fetchone()
        return row["id"]


# ==========================================
# Streak Recovery
# ==========================================

async def get_recovery_request(
    conn: psycopg.AsyncConnection,
    user_id: str
) -> Optional[StreakRecoveryRequest]:
    async with conn.cursor() as cur:
        await cur.execute(
            """
            SELECT user_id, days_missed, crystal_cost, streak_at_risk, streak_lost, opened_at, expires_at
            FROM streak_recovery_requests
            WHERE user_id = %s
            """,
            (user_id,)
        )
        row = await cur.fetchone()
        return StreakRecoveryRequest(**row) if row else None


async def save_recovery_request(conn: psycopg.AsyncConnection, request: StreakRecoveryRequest) -> None:
    """Insert or replace the member's single recovery request"""
    async with conn.cursor() as cur:
        await cur.execute(
            """
            INSERT INTO streak_recovery_requests
                (user_id, days_missed, crystal_cost, streak_at_risk, streak_lost, opened_at, expires_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id) DO UPDATE SET
                days_missed = EXCLUDED.days_missed,
                crystal_cost = EXCLUDED.crystal_cost,
                streak_at_risk = EXCLUDED.streak_at_risk,
                streak_lost = EXCLUDED.streak_lost,
                opened_at = EXCLUDED.opened_at,
                expires_at = EXCLUDED.expires_at
            """,
            (
                request.user_id,
                request.days_missed,
                request.crystal_cost,
                request.streak_at_risk,
                request.streak_lost,
                request.opened_at,
                request.expires_at,
            )
        )


async def delete_recovery_request(conn: psycopg.AsyncConnection, user_id: str) -> bool:
    async with conn.cursor() as cur:
        await cur.execute(
            "DELETE FROM streak_recovery_requests WHERE user_id = %s",
            (user_id,)
        )
        return cur.rowcount > 0


# ==========================================
# Streak Milestones
# ==========================================

async def get_awarded_milestones(conn: psycopg.AsyncConnection, user_id: str) -> set[int]:
    async with conn.cursor() as cur:
        await cur.execute(
            "SELECT days FROM streak_milestones WHERE user_id = %s",
            (user_id,)
        )
        rows = await cur.fetchall()
        return {row["days"] for row in rows}


async def mark_milestone_awarded(conn: psycopg.AsyncConnection, user_id: str, days: int) -> bool:
    """Returns True only when this call inserted the milestone row"""
    async with conn.cursor() as cur:
        await cur.execute(
            """
            INSERT INTO streak_milestones (user_id, days)
            VALUES (%s, %s)
            ON CONFLICT (user_id, days) DO NOTHING
            RETURNING days
            """,
            (user_id, days)
        )
        return await cur.fetchone() is not None


# ==========================================
# Streak Freezes
# ==========================================

async def add_freeze_history(
    conn: psycopg.AsyncConnection,
    user_id: str,
    streak_saved: int,
    freezes_used: int,
    was_automatic: bool = True
) -> None:
    """One history row per freeze spent"""
    async with conn.cursor() as cur:
        for _ in range(freezes_used):
            await cur.execute(
                """
                INSERT INTO streak_freeze_history (user_id, streak_saved, crystals_cost, was_automatic)
                VALUES (%s, %s, 0, %s)
                """,
                (user_id, streak_saved, was_automatic)
            )
