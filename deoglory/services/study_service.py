"""
StudyService - Study Progression Business Logic

Orchestrates the pure progression rules against PostgreSQL. Every public
method is one database transaction; methods that change the profile lock
its row first and write it back with a version check.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Callable, Dict, Iterable, Optional

import psycopg

from deoglory import config
from deoglory.db.queries import achievements as achievement_queries
from deoglory.db.queries import challenge as challenge_queries
from deoglory.db.queries import content as content_queries
from deoglory.db.queries import progress as progress_queries
from deoglory.db.queries import study as study_queries
from deoglory.exceptions import (
    AttemptAlreadyScored,
    AttemptInProgress,
    InvalidStageTransition,
    NoRecoveryPending,
    RecordNotFoundError,
    SeasonNotYetCompleted,
    ValidationError,
    wrap_external_exception,
)
from deoglory.models.challenge import ChallengeAttempt, ChallengeResult, ChallengeStart
from deoglory.models.content import FinalChallenge, StageKind
from deoglory.models.profile import CrystalSummary, ProfileSnapshot, StreakStatus, StudyProfile
from deoglory.models.progress import ProgressTree, SeasonProgressStatus
from deoglory.observability import metrics
from deoglory.progression import (
    achievement_system,
    crystal_rewards,
    final_challenge,
    stage_machine,
    streak_system,
    unlocks,
    xp_system,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StudyService:
    """
    Service for the study progression engine.

    Responsibilities:
    - Profile snapshot and progress tree
    - Stage completion with XP, streak tick, milestones and achievements
    - Streak recovery economy and streak freezes
    - Lesson crystal bonuses
    - Final Challenge lifecycle
    """

    def __init__(self, db_connection, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize StudyService.

        Args:
            db_connection: Database instance exposing transaction()
            clock: Returns the current aware datetime; injected in tests
        """
        self.db = db_connection
        self.clock = clock or utc_now
        logger.debug("StudyService initialized")

    @asynccontextmanager
    async def _transaction(self, operation: str, user_id: Optional[str] = None) -> AsyncGenerator[Any, None]:
        try:
            async with self.db.transaction() as conn:
                yield conn
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation=operation, user_id=user_id) from e

    # ==========================================
    # Shared steps
    # ==========================================

    async def _lock_profile(self, conn, user_id: str) -> StudyProfile:
        return await study_queries.get_or_create_profile(conn, user_id, config.DEFAULT_TIMEZONE)

    async def _resolve_tree(self, conn, user_id: str, now: datetime) -> Dict[str, Any]:
        seasons = await content_queries.get_seasons(conn)
        lessons_by_season = await content_queries.get_lessons_by_season(conn)
        progress = await progress_queries.get_lesson_progress_map(conn, user_id)
        season_progress = await progress_queries.get_season_progress_map(conn, user_id)
        challenge_seasons = await content_queries.get_active_challenge_seasons(conn)

        tree = unlocks.resolve_progress_tree(
            user_id,
            seasons,
            lessons_by_season,
            progress,
            now,
            season_progress=season_progress,
            challenge_seasons=challenge_seasons,
        )
        return {
            "tree": tree,
            "seasons": {season.id: season for season in seasons},
            "progress": progress,
        }

    async def _credit_xp(
        self,
        conn,
        profile: StudyProfile,
        amount: int,
        source: str,
        source_id: Optional[str],
        description: str
    ) -> Dict[str, Any]:
        xp_result = xp_system.apply_xp(profile, amount)
        if amount > 0:
            await study_queries.add_xp_transaction(
                conn, profile.user_id, amount, source, source_id, description, profile.total_xp
            )
            metrics.xp_awarded_total.labels(source=source).inc(amount)
            logger.info(f"Awarded {amount} XP to user {profile.user_id} ({source}: {description})")
        return xp_result

    async def _change_crystals(
        self,
        conn,
        profile: StudyProfile,
        amount: int,
        source: str,
        source_id: Optional[str],
        description: str
    ) -> int:
        """Apply a signed crystal delta and append it to the ledger"""
        profile.crystals += amount
        await study_queries.add_crystal_transaction(
            conn, profile.user_id, amount, source, source_id, description, profile.crystals
        )
        if amount > 0:
            metrics.crystals_earned_total.labels(source=source).inc(amount)
        return profile.crystals

    async def _evaluate_streak(self, conn, profile: StudyProfile, now: datetime) -> Dict[str, Any]:
        """Run the login/activity check and persist the recovery request it implies"""
        today = streak_system.local_date(now, profile.timezone)
        pending = await study_queries.get_recovery_request(conn, profile.user_id)
        check = streak_system.evaluate_streak(profile, today, pending, now)

        request = check["request"]
        if request is None:
            if pending is not None:
                await study_queries.delete_recovery_request(conn, profile.user_id)
        elif request != pending:
            await study_queries.save_recovery_request(conn, request)

        if check["event"]:
            metrics.streak_events_total.labels(event=check["event"]).inc()
        if check["freezes_used"]:
            await study_queries.add_freeze_history(
                conn, profile.user_id, profile.current_streak, check["freezes_used"]
            )
            metrics.streak_events_total.labels(event="frozen").inc(check["freezes_used"])

        check["today"] = today
        return check

    async def _award_milestones(self, conn, profile: StudyProfile) -> list[Dict[str, int]]:
        awarded = await study_queries.get_awarded_milestones(conn, profile.user_id)
        granted = []
        for milestone in streak_system.milestones_reached(profile.current_streak, awarded):
            if not await study_queries.mark_milestone_awarded(conn, profile.user_id, milestone["days"]):
                continue
            description = f"{milestone['days']}-day streak"
            await self._change_crystals(
                conn, profile, milestone["crystals"], "streak_milestone", str(milestone["days"]), description
            )
            await self._credit_xp(
                conn, profile, milestone["xp"], "streak_milestone", str(milestone["days"]), description
            )
            granted.append(milestone)
            logger.info(f"User {profile.user_id} reached the {milestone['days']}-day streak milestone")
        return granted

    async def _evaluate_achievements(
        self,
        conn,
        profile: StudyProfile,
        events: Iterable[str] = ()
    ) -> Dict[str, Any]:
        """
        Unlock qualifying achievements; rewards are paid only for fresh unlock rows

        Returns:
            {'unlocked': list of achievement dicts, 'rewards': summarize_rewards() totals}
        """
        catalog = await achievement_queries.get_all_achievements(conn)
        unlocked_codes = await achievement_queries.get_unlocked_codes(conn, profile.user_id)
        candidates = achievement_system.find_new_achievements(catalog, profile, unlocked_codes, events)

        granted = []
        unlocked = []
        for achievement in candidates:
            if not await achievement_queries.unlock_achievement(conn, profile.user_id, achievement.id):
                continue
            granted.append(achievement)
            if achievement.xp_reward:
                await self._credit_xp(
                    conn, profile, achievement.xp_reward, "achievement", achievement.code, achievement.name
                )
            if achievement.crystal_reward:
                await self._change_crystals(
                    conn, profile, achievement.crystal_reward, "achievement", achievement.code, achievement.name
                )
            metrics.achievements_unlocked_total.labels(category=achievement.category.value).inc()
            logger.info(f"User {profile.user_id} unlocked achievement: {achievement.code} ({achievement.name})")
            unlocked.append({
                "code": achievement.code,
                "name": achievement.name,
                "description": achievement.description,
                "icon": achievement.icon,
                "xp_reward": achievement.xp_reward,
                "crystal_reward": achievement.crystal_reward,
            })

        rewards = achievement_system.summarize_rewards(granted)
        if rewards["count"]:
            logger.info(
                f"User {profile.user_id} unlocked {rewards['count']} achievement(s): "
                f"+{rewards['xp']} XP, +{rewards['crystals']} crystals"
            )
        return {"unlocked": unlocked, "rewards": rewards}

    # ==========================================
    # Reads
    # ==========================================

    async def get_snapshot(self, user_id: str) -> ProfileSnapshot:
        """XP, level, streak and crystal snapshot (defaults for unknown members)"""
        async with self._transaction("get_snapshot", user_id) as conn:
            profile = await study_queries.get_profile(conn, user_id)

        profile = profile or StudyProfile(user_id=user_id)
        level = xp_system.calculate_level_from_xp(profile.total_xp)
        return ProfileSnapshot(
            user_id=user_id,
            total_xp=profile.total_xp,
            current_level=level["current_level"],
            xp_in_current_level=level["xp_in_current_level"],
            xp_to_next_level=level["xp_to_next_level"],
            progress_percent=level["progress_percent"],
            current_streak=profile.current_streak,
            longest_streak=profile.longest_streak,
            crystals=profile.crystals,
            hearts=profile.hearts,
            hearts_max=profile.hearts_max,
            streak_freezes_available=profile.streak_freezes_available,
            last_activity_date=profile.last_activity_date,
        )

    async def get_progress_tree(self, user_id: str) -> ProgressTree:
        async with self._transaction("get_progress_tree", user_id) as conn:
            resolved = await self._resolve_tree(conn, user_id, self.clock())
        return resolved["tree"]

    async def get_achievements(self, user_id: str) -> Dict[str, Any]:
        async with self._transaction("get_achievements", user_id) as conn:
            unlocked = await achievement_queries.get_user_achievements(conn, user_id)
            catalog = await achievement_queries.get_all_achievements(conn)

        return {
            "unlocked": unlocked,
            "total_unlocked": len(unlocked),
            "total_achievements": len(catalog),
        }

    async def seed_achievement_catalog(self) -> int:
        async with self._transaction("seed_achievements") as conn:
            return await achievement_queries.seed_achievements(conn, achievement_system.DEFAULT_ACHIEVEMENTS)

    # ==========================================
    # Lesson stages
    # ==========================================

    async def _stage_context(self, conn, user_id: str, lesson_id: int, stage: StageKind, now: datetime) -> Dict[str, Any]:
        """Load the lesson, its progress and reachability; rejects ended seasons"""
        lesson = await content_queries.get_lesson(conn, lesson_id)
        if lesson is None:
            raise RecordNotFoundError(
                f"Lesson {lesson_id} not found", record_type="Lesson", record_id=lesson_id, user_id=user_id
            )

        resolved = await self._resolve_tree(conn, user_id, now)
        season = resolved["seasons"].get(lesson.season_id)
        if season is None:
            raise RecordNotFoundError(
                f"Lesson {lesson_id} is not published", record_type="Lesson", record_id=lesson_id, user_id=user_id
            )
        if unlocks.is_season_ended(season, now):
            raise InvalidStageTransition(
                f"Season {season.id} has ended",
                lesson_id=lesson_id,
                stage=stage.value,
                reason="season_ended",
                user_id=user_id,
            )

        progress = unlocks.progress_for_lesson(lesson, resolved["progress"])
        return {
            "lesson": lesson,
            "progress": progress,
            "reachable": unlocks.is_lesson_reachable(resolved["tree"], lesson_id),
        }

    async def complete_stage(
        self,
        user_id: str,
        lesson_id: int,
        stage: StageKind,
        perfect: bool = False
    ) -> Dict[str, Any]:
        """
        Complete the member's current stage of a lesson.

        Side effects, all in one transaction:
        - Stage marked completed
        - Streak check and daily tick
        - Lesson XP and lesson crystal bonuses credited once, when the last
          stage completes (`perfect` marks a lesson finished without mistakes)
        - Streak milestones and achievements

        Returns:
            {
                'lesson_id': int,
                'stage': str,
                'next_stage': Optional[str],
                'lesson_completed': bool,
                'xp_awarded': int,
                'crystals_awarded': int,
                'crystal_rewards': list,
                'leveled_up': bool,
                'new_level': int,
                'current_streak': int,
                'streak_message': str,
                'milestones': list,
                'achievements_unlocked': list,
                'achievement_rewards': dict
            }
        """
        now = self.clock()
        async with self._transaction("complete_stage", user_id) as conn:
            profile = await self._lock_profile(conn, user_id)
            old_level = profile.current_level
            old_xp = profile.total_xp
            old_crystals = profile.crystals

            context = await self._stage_context(conn, user_id, lesson_id, stage, now)
            lesson = context["lesson"]
            updated = stage_machine.complete_stage(context["progress"], stage, context["reachable"], now)
            await progress_queries.save_stage_progress(conn, user_id, lesson_id, updated.stage(stage))
            metrics.stage_completions_total.labels(stage=stage.value).inc()

            # Activity resolves any open recovery prompt as a forfeit before the tick
            check = await self._evaluate_streak(conn, profile, now)
            if check["request"] is not None:
                streak_system.apply_forfeit(profile)
                await study_queries.delete_recovery_request(conn, user_id)
                event = "acknowledged" if check["request"].streak_lost else "forfeited"
                metrics.streak_events_total.labels(event=event).inc()
            tick = streak_system.tick_activity(profile, check["today"])

            lesson_completed = False
            bonuses = []
            if updated.is_completed:
                first_time = await progress_queries.mark_lesson_completed(
                    conn, user_id, lesson_id, lesson.xp_reward
                )
                if first_time:
                    lesson_completed = True
                    profile.lessons_completed += 1
                    await self._credit_xp(
                        conn, profile, lesson.xp_reward, "lesson", str(lesson_id), f"Completed {lesson.title}"
                    )
                    bonuses = crystal_rewards.lesson_rewards(profile, check["today"], perfect)
                    for bonus in bonuses:
                        await self._change_crystals(
                            conn, profile, bonus["crystals"], bonus["type"], str(lesson_id),
                            f"{lesson.title}: {bonus['type']}"
                        )

            milestones = await self._award_milestones(conn, profile)
            local_now = now.astimezone(streak_system.zone_for(profile.timezone))
            achievements = await self._evaluate_achievements(
                conn, profile, achievement_system.time_of_day_events(local_now)
            )
            await study_queries.update_profile(conn, profile)

        next_kind = stage_machine.next_stage(stage)
        logger.info(
            f"User {user_id} completed {stage.value} of lesson {lesson_id} "
            f"(xp +{profile.total_xp - old_xp}, streak {profile.current_streak})"
        )
        return {
            "lesson_id": lesson_id,
            "stage": stage.value,
            "next_stage": next_kind.value if next_kind and not updated.is_completed else None,
            "lesson_completed": lesson_completed,
            "xp_awarded": profile.total_xp - old_xp,
            "crystals_awarded": profile.crystals - old_crystals,
            "crystal_rewards": bonuses,
            "leveled_up": profile.current_level > old_level,
            "new_level": profile.current_level,
            "current_streak": profile.current_streak,
            "streak_message": tick["message"],
            "milestones": milestones,
            "achievements_unlocked": achievements["unlocked"],
            "achievement_rewards": achievements["rewards"],
        }

    async def record_stage_progress(
        self,
        user_id: str,
        lesson_id: int,
        stage: StageKind,
        completed_units: int
    ) -> Dict[str, Any]:
        """Update sub-progress inside the current stage; never completes it"""
        if completed_units < 0:
            raise ValidationError(
                "completed_units cannot be negative", field="completed_units", value=completed_units, user_id=user_id
            )

        now = self.clock()
        async with self._transaction("record_stage_progress", user_id) as conn:
            await self._lock_profile(conn, user_id)
            context = await self._stage_context(conn, user_id, lesson_id, stage, now)
            updated = stage_machine.record_unit_progress(
                context["progress"], stage, completed_units, context["reachable"]
            )
            stage_progress = updated.stage(stage)
            await progress_queries.save_stage_progress(conn, user_id, lesson_id, stage_progress)

        return {
            "lesson_id": lesson_id,
            "stage": stage.value,
            "completed_units": stage_progress.completed_units,
            "total_units": stage_progress.total_units,
        }

    # ==========================================
    # Streak recovery
    # ==========================================

    async def get_streak_status(self, user_id: str) -> StreakStatus:
        """Login check: may open, refresh or expire a recovery request"""
        now = self.clock()
        async with self._transaction("get_streak_status", user_id) as conn:
            profile = await self._lock_profile(conn, user_id)
            check = await self._evaluate_streak(conn, profile, now)
            await study_queries.update_profile(conn, profile)
        return check["status"]

    async def recover_streak(self, user_id: str) -> Dict[str, Any]:
        """
        Pay crystals to restore the streak

        Raises:
            NoRecoveryPending: nothing to recover, or the streak is already lost
            InsufficientCrystals: balance below the recovery cost
        """
        now = self.clock()
        async with self._transaction("recover_streak", user_id) as conn:
            profile = await self._lock_profile(conn, user_id)
            check = await self._evaluate_streak(conn, profile, now)
            request = check["request"]
            if request is None or request.streak_lost:
                raise NoRecoveryPending(user_id=user_id, operation="recover_streak")

            recovery = streak_system.apply_recovery(profile, request, check["today"])
            await study_queries.add_crystal_transaction(
                conn,
                user_id,
                -request.crystal_cost,
                "streak_recovery",
                None,
                f"Recovered {request.streak_at_risk}-day streak after {request.days_missed} missed days",
                profile.crystals,
            )
            await study_queries.delete_recovery_request(conn, user_id)
            metrics.crystals_spent_total.labels(purpose="streak_recovery").inc(request.crystal_cost)
            metrics.streak_events_total.labels(event="recovered").inc()

            achievements = await self._evaluate_achievements(
                conn, profile, {achievement_system.EVENT_STREAK_RECOVERED}
            )
            await study_queries.update_profile(conn, profile)

        recovery["achievements_unlocked"] = achievements["unlocked"]
        return recovery

    async def _resolve_without_payment(self, user_id: str, operation: str, event: str) -> Dict[str, Any]:
        now = self.clock()
        async with self._transaction(operation, user_id) as conn:
            profile = await self._lock_profile(conn, user_id)
            check = await self._evaluate_streak(conn, profile, now)
            if check["request"] is None:
                raise NoRecoveryPending(user_id=user_id, operation=operation)

            result = streak_system.apply_forfeit(profile)
            await study_queries.delete_recovery_request(conn, user_id)
            metrics.streak_events_total.labels(event=event).inc()
            await study_queries.update_profile(conn, profile)

        logger.info(f"User {user_id} streak {event} (was {check['request'].streak_at_risk} days)")
        return result

    async def forfeit_streak(self, user_id: str) -> Dict[str, Any]:
        return await self._resolve_without_payment(user_id, "forfeit_streak", "forfeited")

    async def acknowledge_streak_loss(self, user_id: str) -> Dict[str, Any]:
        return await self._resolve_without_payment(user_id, "acknowledge_streak_loss", "acknowledged")

    async def grant_crystals(
        self,
        user_id: str,
        amount: int,
        source: str,
        source_id: Optional[str] = None,
        description: Optional[str] = None
    ) -> Dict[str, Any]:
        """Inbound crystal-earning event from a collaborator"""
        if amount <= 0:
            raise ValidationError("Crystal grant must be positive", field="amount", value=amount, user_id=user_id)

        async with self._transaction("grant_crystals", user_id) as conn:
            profile = await self._lock_profile(conn, user_id)
            balance = await self._change_crystals(
                conn, profile, amount, source, source_id, description or f"Granted by {source}"
            )
            await study_queries.update_profile(conn, profile)

        logger.info(f"Granted {amount} crystals to user {user_id} ({source}), balance {balance}")
        return {"crystals_granted": amount, "crystals": balance}

    async def get_crystal_summary(self, user_id: str) -> CrystalSummary:
        async with self._transaction("get_crystal_summary", user_id) as conn:
            profile = await study_queries.get_profile(conn, user_id)

        profile = profile or StudyProfile(user_id=user_id)
        return CrystalSummary(
            user_id=user_id,
            balance=profile.crystals,
            freezes_available=profile.streak_freezes_available,
            max_freezes=len(config.STREAK_FREEZE_COSTS),
            next_freeze_cost=streak_system.next_freeze_cost(profile.streak_freezes_available),
            current_streak=profile.current_streak,
            longest_streak=profile.longest_streak,
        )

    async def purchase_streak_freeze(self, user_id: str) -> Dict[str, Any]:
        """
        Buy one streak freeze with crystals

        Raises:
            StreakFreezeLimitReached: already holding the maximum
            InsufficientCrystals: balance below the freeze price
        """
        async with self._transaction("purchase_streak_freeze", user_id) as conn:
            profile = await self._lock_profile(conn, user_id)
            purchase = streak_system.buy_freeze(profile)
            await study_queries.add_crystal_transaction(
                conn,
                user_id,
                -purchase["crystals_spent"],
                "freeze_purchase",
                None,
                f"Streak freeze #{purchase['freezes_available']}",
                profile.crystals,
            )
            metrics.crystals_spent_total.labels(purpose="freeze_purchase").inc(purchase["crystals_spent"])
            await study_queries.update_profile(conn, profile)

        return purchase

    # ==========================================
    # Final Challenge
    # ==========================================

    async def _load_challenge(self, conn, user_id: str, season_id: int) -> FinalChallenge:
        challenge = await content_queries.get_final_challenge(conn, season_id)
        if challenge is None or not challenge.is_active or not challenge.questions:
            raise RecordNotFoundError(
                f"No active Final Challenge for season {season_id}",
                record_type="FinalChallenge",
                record_id=season_id,
                user_id=user_id,
            )
        return challenge

    async def _score_attempt(
        self,
        conn,
        profile: StudyProfile,
        attempt: ChallengeAttempt,
        challenge: FinalChallenge,
        submitted: Optional[list[int]],
        now: datetime
    ) -> ChallengeResult:
        season_progress = await progress_queries.get_season_progress(conn, profile.user_id, attempt.season_id)
        scored, result, updated_progress = final_challenge.finalize_attempt(
            attempt, challenge, submitted, season_progress, now
        )
        if not await challenge_queries.save_scored_attempt(conn, scored):
            raise AttemptAlreadyScored(attempt_id=attempt.id, user_id=profile.user_id, operation="score_attempt")
        await progress_queries.save_season_progress(conn, updated_progress)

        old_level = profile.current_level
        if result.xp_awarded:
            await self._credit_xp(
                conn, profile, result.xp_awarded, "final_challenge", attempt.id,
                f"Final Challenge season {attempt.season_id}: {result.score}%"
            )

        events = set()
        if result.is_perfect:
            events.add(achievement_system.EVENT_PERFECT_CHALLENGE)
            metrics.final_challenge_total.labels(outcome="perfect").inc()
        if result.is_mastered:
            events.add(achievement_system.EVENT_SEASON_MASTERED)
        metrics.final_challenge_total.labels(outcome=metrics.challenge_outcome(result.is_mastered)).inc()
        await self._evaluate_achievements(conn, profile, events)

        return result.model_copy(update={
            "leveled_up": profile.current_level > old_level,
            "new_level": profile.current_level,
        })

    async def start_final_challenge(self, user_id: str, season_id: int) -> ChallengeStart:
        """
        Start a timed attempt

        Raises:
            RecordNotFoundError: season or active challenge missing
            SeasonNotYetCompleted: lessons of the season remain
            AttemptInProgress: an unexpired attempt already exists
        """
        now = self.clock()
        async with self._transaction("start_final_challenge", user_id) as conn:
            profile = await self._lock_profile(conn, user_id)
            resolved = await self._resolve_tree(conn, user_id, now)
            season_view = unlocks.find_season(resolved["tree"], season_id)
            if season_view is None:
                raise RecordNotFoundError(
                    f"Season {season_id} not found", record_type="Season", record_id=season_id, user_id=user_id
                )
            if season_view.status != SeasonProgressStatus.COMPLETED:
                raise SeasonNotYetCompleted(
                    f"Season {season_id}: {season_view.lessons_completed}/{season_view.total_lessons} lessons completed",
                    season_id=season_id,
                    user_id=user_id,
                )

            challenge = await self._load_challenge(conn, user_id, season_id)

            open_attempt = await challenge_queries.get_open_attempt(conn, user_id, season_id)
            if open_attempt is not None:
                if not final_challenge.is_late(open_attempt, now):
                    raise AttemptInProgress(expires_at=open_attempt.expires_at, user_id=user_id)
                logger.info(f"Scoring abandoned attempt {open_attempt.id} for user {user_id}")
                await self._score_attempt(conn, profile, open_attempt, challenge, None, now)

            questions = final_challenge.freeze_questions(challenge)
            attempt = final_challenge.new_attempt(user_id, challenge, questions, now)
            token = final_challenge.issue_token(attempt)
            await challenge_queries.create_attempt(conn, attempt)
            await study_queries.update_profile(conn, profile)

        metrics.final_challenge_total.labels(outcome="started").inc()
        logger.info(f"User {user_id} started Final Challenge of season {season_id} ({len(questions)} questions)")
        return ChallengeStart(
            attempt_id=attempt.id,
            token=token,
            season_id=season_id,
            title=challenge.title,
            questions=final_challenge.public_questions(questions),
            time_limit_seconds=challenge.time_limit_seconds,
            started_at=attempt.started_at,
            expires_at=attempt.expires_at,
        )

    async def record_challenge_answer(
        self,
        user_id: str,
        season_id: int,
        token: str,
        question_id: str,
        answer_index: int
    ) -> Dict[str, Any]:
        now = self.clock()
        claims = final_challenge.decode_token(token, user_id, season_id)
        async with self._transaction("record_challenge_answer", user_id) as conn:
            attempt = await challenge_queries.get_attempt(conn, claims["aid"], for_update=True)
            attempt = final_challenge.verify_attempt(attempt, claims)
            attempt = final_challenge.record_answer(attempt, question_id, answer_index, now)
            await challenge_queries.save_answers(conn, attempt)

        return {
            "attempt_id": attempt.id,
            "question_id": question_id,
            "answers_recorded": len(attempt.answers),
            "question_count": len(attempt.questions),
            "state": attempt.state.value,
        }

    async def submit_final_challenge(
        self,
        user_id: str,
        season_id: int,
        token: str,
        answers: Optional[list[int]] = None
    ) -> ChallengeResult:
        """
        Score an attempt exactly once

        Raises:
            AttemptExpiredOrMissing: token invalid or attempt unknown
            AttemptAlreadyScored: resubmission
        """
        now = self.clock()
        claims = final_challenge.decode_token(token, user_id, season_id)
        async with self._transaction("submit_final_challenge", user_id) as conn:
            profile = await self._lock_profile(conn, user_id)
            attempt = await challenge_queries.get_attempt(conn, claims["aid"], for_update=True)
            attempt = final_challenge.verify_attempt(attempt, claims)
            challenge = await self._load_challenge(conn, user_id, season_id)
            result = await self._score_attempt(conn, profile, attempt, challenge, answers, now)
            await study_queries.update_profile(conn, profile)

        return result
