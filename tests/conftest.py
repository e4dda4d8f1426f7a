"""Global test fixtures and utilities for study engine tests"""
import copy
import pytest
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import patch

from deoglory import config
from deoglory.exceptions import ConcurrentUpdateError
from deoglory.models.content import FinalChallenge, Lesson, Question, Season, SeasonStatus, StageKind, STAGE_ORDER
from deoglory.models.achievement import UserAchievement
from deoglory.models.profile import StudyProfile
from deoglory.models.progress import LessonProgress, StageProgress


# Tuesday 2026-03-10, 12:00 in America/Sao_Paulo
FIXED_NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def study_config(monkeypatch):
    """Deterministic engine configuration for every test"""
    monkeypatch.setattr(config, "CHALLENGE_TOKEN_SECRET", "test-secret-key")
    monkeypatch.setattr(config, "CHALLENGE_TOKEN_ALGORITHM", "HS256")
    monkeypatch.setattr(config, "CHALLENGE_SUBMIT_GRACE_SECONDS", 5)
    monkeypatch.setattr(config, "MASTERY_THRESHOLD", 80)
    monkeypatch.setattr(config, "STREAK_RECOVERY_COSTS", [3, 6, 10, 15])
    monkeypatch.setattr(config, "STREAK_LOSS_DAYS", 5)
    monkeypatch.setattr(config, "STREAK_RECOVERY_GRACE_HOURS", 24)
    monkeypatch.setattr(config, "STREAK_FREEZE_COSTS", [10, 20])
    monkeypatch.setattr(config, "DEFAULT_TIMEZONE", "America/Sao_Paulo")


# ============================================================================
# Clock Fixtures
# ============================================================================

class FakeClock:
    """Injectable clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(FIXED_NOW)


@pytest.fixture
def now():
    return FIXED_NOW


# ============================================================================
# Model Factories
# ============================================================================

@pytest.fixture
def test_user_id():
    """Standard test member ID"""
    return "member-42"


@pytest.fixture
def make_profile(test_user_id):
    def _make(**overrides):
        data = {"user_id": test_user_id, "timezone": "America/Sao_Paulo"}
        data.update(overrides)
        return StudyProfile(**data)
    return _make


@pytest.fixture
def make_questions():
    def _make(count: int = 5):
        return [
            Question(
                id=f"q{i}",
                prompt=f"Question {i}",
                options=["A", "B", "C", "D"],
                correct_index=i % 4,
            )
            for i in range(1, count + 1)
        ]
    return _make


def build_progress(lesson_id: int, completed: int = 0) -> LessonProgress:
    """LessonProgress with the first `completed` stages done"""
    return LessonProgress(
        lesson_id=lesson_id,
        stages=[
            StageProgress(stage=kind, completed=index < completed, completed_units=1 if index < completed else 0)
            for index, kind in enumerate(STAGE_ORDER)
        ],
    )


@pytest.fixture
def progress_for():
    return build_progress


# ============================================================================
# In-memory persistence
# ============================================================================

class StoreData:
    """Plain state of the in-memory database"""

    def __init__(self):
        self.profiles = {}
        self.seasons = {}
        self.lessons = {}
        self.challenges = {}
        self.stage_rows = {}
        self.lesson_completions = set()
        self.season_progress = {}
        self.recovery_requests = {}
        self.milestones = set()
        self.freeze_history = []
        self.attempts = {}
        self.achievements = []
        self.user_achievements = {}
        self.xp_ledger = []
        self.crystal_ledger = []


class InMemoryStore:
    """
    Stand-in for the query modules, with the same function signatures

    Each namespace (study, content, progress, challenge, achievements)
    replaces the matching deoglory.db.queries module in the service.
    """

    def __init__(self):
        self.data = StoreData()
        self.study = SimpleNamespace(
            get_profile=self.get_profile,
            create_profile=self.create_profile,
            get_or_create_profile=self.get_or_create_profile,
            update_profile=self.update_profile,
            add_xp_transaction=self.add_xp_transaction,
            add_crystal_transaction=self.add_crystal_transaction,
            get_recovery_request=self.get_recovery_request,
            save_recovery_request=self.save_recovery_request,
            delete_recovery_request=self.delete_recovery_request,
            get_awarded_milestones=self.get_awarded_milestones,
            mark_milestone_awarded=self.mark_milestone_awarded,
            add_freeze_history=self.add_freeze_history,
        )
        self.content = SimpleNamespace(
            get_seasons=self.get_seasons,
            get_lessons_by_season=self.get_lessons_by_season,
            get_lesson=self.get_lesson,
            get_active_challenge_seasons=self.get_active_challenge_seasons,
            get_final_challenge=self.get_final_challenge,
        )
        self.progress = SimpleNamespace(
            get_lesson_progress_map=self.get_lesson_progress_map,
            save_stage_progress=self.save_stage_progress,
            mark_lesson_completed=self.mark_lesson_completed,
            get_season_progress_map=self.get_season_progress_map,
            get_season_progress=self.get_season_progress,
            save_season_progress=self.save_season_progress,
        )
        self.challenge = SimpleNamespace(
            get_attempt=self.get_attempt,
            get_open_attempt=self.get_open_attempt,
            create_attempt=self.create_attempt,
            save_answers=self.save_answers,
            save_scored_attempt=self.save_scored_attempt,
        )
        self.achievements = SimpleNamespace(
            get_all_achievements=self.get_all_achievements,
            seed_achievements=self.seed_achievements,
            get_unlocked_codes=self.get_unlocked_codes,
            unlock_achievement=self.unlock_achievement,
            get_user_achievements=self.get_user_achievements,
        )

    # -- seeding helpers --------------------------------------------------

    def put_profile(self, profile: StudyProfile) -> None:
        self.data.profiles[profile.user_id] = profile.model_copy(deep=True)

    def profile(self, user_id: str) -> StudyProfile:
        return self.data.profiles[user_id]

    def add_season(
        self, season_id: int, order_index: int, lesson_xp: list[int], stage_units=None, **fields
    ) -> list[Lesson]:
        fields.setdefault("status", SeasonStatus.PUBLISHED)
        self.data.seasons[season_id] = Season(
            id=season_id, title=f"Season {season_id}", order_index=order_index,
            total_lessons=len(lesson_xp), **fields
        )
        lessons = []
        for index, xp in enumerate(lesson_xp):
            lesson = Lesson(
                id=season_id * 100 + index + 1,
                season_id=season_id,
                order_index=index,
                lesson_number=index + 1,
                title=f"Lesson {index + 1}",
                xp_reward=xp,
                stage_units=stage_units or {},
            )
            self.data.lessons[lesson.id] = lesson
            lessons.append(lesson)
        return lessons

    def add_challenge(self, challenge: FinalChallenge) -> None:
        self.data.challenges[challenge.season_id] = challenge

    def complete_lesson(self, user_id: str, lesson_id: int) -> None:
        for kind in STAGE_ORDER:
            self.data.stage_rows[(user_id, lesson_id, kind)] = StageProgress(
                stage=kind, completed=True, completed_units=1, completed_at=FIXED_NOW
            )
        self.data.lesson_completions.add((user_id, lesson_id))

    # -- study ------------------------------------------------------------

    async def get_profile(self, conn, user_id, for_update=False):
        profile = self.data.profiles.get(user_id)
        return profile.model_copy(deep=True) if profile else None

    async def create_profile(self, conn, user_id, timezone):
        self.data.profiles.setdefault(user_id, StudyProfile(user_id=user_id, timezone=timezone))
        return await self.get_profile(conn, user_id)

    async def get_or_create_profile(self, conn, user_id, timezone, for_update=True):
        profile = await self.get_profile(conn, user_id, for_update)
        return profile or await self.create_profile(conn, user_id, timezone)

    async def update_profile(self, conn, profile):
        stored = self.data.profiles[profile.user_id]
        if stored.version != profile.version:
            raise ConcurrentUpdateError(user_id=profile.user_id, operation="update_profile")
        saved = profile.model_copy(deep=True, update={"version": profile.version + 1})
        self.data.profiles[profile.user_id] = saved
        return saved.model_copy(deep=True)

    async def add_xp_transaction(self, conn, user_id, amount, source, source_id, description, balance_after):
        self.data.xp_ledger.append((user_id, amount, source, source_id, balance_after))
        return len(self.data.xp_ledger)

    async def add_crystal_transaction(self, conn, user_id, amount, source, source_id, description, balance_after):
        self.data.crystal_ledger.append((user_id, amount, source, source_id, balance_after))
        return len(self.data.crystal_ledger)

    async def get_recovery_request(self, conn, user_id):
        request = self.data.recovery_requests.get(user_id)
        return request.model_copy() if request else None

    async def save_recovery_request(self, conn, request):
        self.data.recovery_requests[request.user_id] = request.model_copy()

    async def delete_recovery_request(self, conn, user_id):
        return self.data.recovery_requests.pop(user_id, None) is not None

    async def get_awarded_milestones(self, conn, user_id):
        return {days for uid, days in self.data.milestones if uid == user_id}

    async def mark_milestone_awarded(self, conn, user_id, days):
        if (user_id, days) in self.data.milestones:
            return False
        self.data.milestones.add((user_id, days))
        return True

    async def add_freeze_history(self, conn, user_id, streak_saved, freezes_used, was_automatic=True):
        self.data.freeze_history.extend([(user_id, streak_saved, was_automatic)] * freezes_used)

    # -- content ----------------------------------------------------------

    async def get_seasons(self, conn):
        visible = [s for s in self.data.seasons.values() if s.status != SeasonStatus.DRAFT]
        return sorted(visible, key=lambda s: (s.order_index, s.id))

    async def get_lessons_by_season(self, conn):
        grouped = {}
        for lesson in sorted(self.data.lessons.values(), key=lambda l: (l.order_index, l.id)):
            season = self.data.seasons[lesson.season_id]
            if season.status != SeasonStatus.DRAFT:
                grouped.setdefault(lesson.season_id, []).append(lesson)
        return grouped

    async def get_lesson(self, conn, lesson_id):
        return self.data.lessons.get(lesson_id)

    async def get_active_challenge_seasons(self, conn):
        return {sid for sid, c in self.data.challenges.items() if c.is_active}

    async def get_final_challenge(self, conn, season_id):
        return self.data.challenges.get(season_id)

    # -- progress ---------------------------------------------------------

    async def get_lesson_progress_map(self, conn, user_id):
        by_lesson = {}
        for (uid, lesson_id, kind), row in self.data.stage_rows.items():
            if uid == user_id:
                by_lesson.setdefault(lesson_id, {})[kind] = row.model_copy()
        return {
            lesson_id: LessonProgress(
                lesson_id=lesson_id,
                stages=[stages.get(kind, StageProgress(stage=kind)) for kind in STAGE_ORDER],
            )
            for lesson_id, stages in by_lesson.items()
        }

    async def save_stage_progress(self, conn, user_id, lesson_id, stage):
        self.data.stage_rows[(user_id, lesson_id, StageKind(stage.stage))] = stage.model_copy()

    async def mark_lesson_completed(self, conn, user_id, lesson_id, xp_awarded):
        if (user_id, lesson_id) in self.data.lesson_completions:
            return False
        self.data.lesson_completions.add((user_id, lesson_id))
        return True

    async def get_season_progress_map(self, conn, user_id):
        return {sid: p.model_copy() for (uid, sid), p in self.data.season_progress.items() if uid == user_id}

    async def get_season_progress(self, conn, user_id, season_id):
        progress = self.data.season_progress.get((user_id, season_id))
        return progress.model_copy() if progress else None

    async def save_season_progress(self, conn, progress):
        self.data.season_progress[(progress.user_id, progress.season_id)] = progress.model_copy()

    # -- challenge --------------------------------------------------------

    async def get_attempt(self, conn, attempt_id, for_update=False):
        attempt = self.data.attempts.get(attempt_id)
        return attempt.model_copy(deep=True) if attempt else None

    async def get_open_attempt(self, conn, user_id, season_id):
        for attempt in self.data.attempts.values():
            if attempt.user_id == user_id and attempt.season_id == season_id and attempt.scored_at is None:
                return attempt.model_copy(deep=True)
        return None

    async def create_attempt(self, conn, attempt):
        self.data.attempts[attempt.id] = attempt.model_copy(deep=True)

    async def save_answers(self, conn, attempt):
        stored = self.data.attempts[attempt.id]
        if stored.scored_at is None:
            self.data.attempts[attempt.id] = stored.model_copy(update={"answers": dict(attempt.answers)})

    async def save_scored_attempt(self, conn, attempt):
        if self.data.attempts[attempt.id].scored_at is not None:
            return False
        self.data.attempts[attempt.id] = attempt.model_copy(deep=True)
        return True

    # -- achievements -----------------------------------------------------

    async def get_all_achievements(self, conn):
        return list(self.data.achievements)

    async def seed_achievements(self, conn, catalog):
        existing = {a.code for a in self.data.achievements}
        added = 0
        for achievement in catalog:
            if achievement.code not in existing:
                self.data.achievements.append(
                    achievement.model_copy(update={"id": len(self.data.achievements) + 1})
                )
                added += 1
        return added

    async def get_unlocked_codes(self, conn, user_id):
        by_id = {a.id: a.code for a in self.data.achievements}
        return {by_id[aid] for uid, aid in self.data.user_achievements if uid == user_id}

    async def unlock_achievement(self, conn, user_id, achievement_id):
        if (user_id, achievement_id) in self.data.user_achievements:
            return False
        self.data.user_achievements[(user_id, achievement_id)] = FIXED_NOW
        return True

    async def get_user_achievements(self, conn, user_id):
        by_id = {a.id: a for a in self.data.achievements}
        return [
            UserAchievement(
                user_id=uid,
                code=by_id[aid].code,
                name=by_id[aid].name,
                unlocked_at=unlocked_at,
                xp_reward=by_id[aid].xp_reward,
                crystal_reward=by_id[aid].crystal_reward,
            )
            for (uid, aid), unlocked_at in self.data.user_achievements.items()
            if uid == user_id
        ]


class FakeDatabase:
    """Database double: one snapshot per transaction, restored on error"""

    def __init__(self, store: InMemoryStore):
        self.store = store
        self.transactions = 0

    @asynccontextmanager
    async def transaction(self):
        snapshot = copy.deepcopy(self.store.data)
        self.transactions += 1
        try:
            yield SimpleNamespace(name="fake-connection")
        except Exception:
            self.store.data = snapshot
            raise


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def study_service(store, clock):
    """StudyService wired to the in-memory store"""
    from deoglory.services.study_service import StudyService

    with patch.multiple(
        "deoglory.services.study_service",
        study_queries=store.study,
        content_queries=store.content,
        progress_queries=store.progress,
        challenge_queries=store.challenge,
        achievement_queries=store.achievements,
    ):
        yield StudyService(FakeDatabase(store), clock=clock)
