"""API routes for the study progression engine"""
import logging
from datetime import datetime, timezone
from typing import Optional
from fastapi import APIRouter, Depends, Request

from deoglory.api.models import (
    AchievementListResponse,
    ChallengeAnswerRequest, ChallengeAnswerResponse,
    ChallengeSubmitRequest,
    CrystalGrantRequest, CrystalGrantResponse,
    ErrorResponse,
    HealthCheckResponse,
    StageCompletionRequest, StageCompletionResponse,
    StageProgressRequest, StageProgressResponse,
    StreakFreezePurchaseResponse, StreakRecoveryResponse, StreakResolutionResponse,
)
from deoglory.api.auth import verify_api_key
from deoglory.api.middleware import limiter
from deoglory.db.connection import db
from deoglory.models.challenge import ChallengeResult, ChallengeStart
from deoglory.models.content import StageKind
from deoglory.models.profile import CrystalSummary, ProfileSnapshot, StreakStatus
from deoglory.models.progress import ProgressTree
from deoglory.services.container import get_container
from deoglory.services.study_service import StudyService

logger = logging.getLogger(__name__)

ENGINE_ERRORS = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}

router = APIRouter(
    prefix="/api/v1/study/{user_id}",
    dependencies=[Depends(verify_api_key)],
    responses=ENGINE_ERRORS,
)
health_router = APIRouter()


def get_study_service() -> StudyService:
    return get_container().study_service


# ==========================================
# Profile and progress
# ==========================================

@router.get("/profile", response_model=ProfileSnapshot)
@limiter.limit("60/minute")
async def get_profile(
    request: Request,
    user_id: str,
    service: StudyService = Depends(get_study_service)
):
    """XP, level, streak and crystal snapshot (Rate limit: 60/minute)"""
    return await service.get_snapshot(user_id)


@router.get("/progress", response_model=ProgressTree)
@limiter.limit("60/minute")
async def get_progress(
    request: Request,
    user_id: str,
    service: StudyService = Depends(get_study_service)
):
    """Season -> lesson -> stage status tree (Rate limit: 60/minute)"""
    return await service.get_progress_tree(user_id)


# ==========================================
# Lesson stages
# ==========================================

@router.post("/lessons/{lesson_id}/stages/{stage}/complete", response_model=StageCompletionResponse)
@limiter.limit("30/minute")
async def complete_stage(
    request: Request,
    user_id: str,
    lesson_id: int,
    stage: StageKind,
    payload: Optional[StageCompletionRequest] = None,
    service: StudyService = Depends(get_study_service)
):
    """Complete the current stage of a lesson (Rate limit: 30/minute)"""
    perfect = payload.perfect if payload else False
    result = await service.complete_stage(user_id, lesson_id, stage, perfect=perfect)
    return StageCompletionResponse(**result)


@router.post("/lessons/{lesson_id}/stages/{stage}/progress", response_model=StageProgressResponse)
@limiter.limit("120/minute")
async def record_stage_progress(
    request: Request,
    user_id: str,
    lesson_id: int,
    stage: StageKind,
    payload: StageProgressRequest,
    service: StudyService = Depends(get_study_service)
):
    """Record sub-progress inside the current stage (Rate limit: 120/minute)"""
    result = await service.record_stage_progress(user_id, lesson_id, stage, payload.completed_units)
    return StageProgressResponse(**result)


# ==========================================
# Streak
# ==========================================

@router.get("/streak/status", response_model=StreakStatus)
@limiter.limit("60/minute")
async def get_streak_status(
    request: Request,
    user_id: str,
    service: StudyService = Depends(get_study_service)
):
    """Login check and recovery prompt payload (Rate limit: 60/minute)"""
    return await service.get_streak_status(user_id)


@router.post("/streak/recover", response_model=StreakRecoveryResponse)
@limiter.limit("10/minute")
async def recover_streak(
    request: Request,
    user_id: str,
    service: StudyService = Depends(get_study_service)
):
    """Pay crystals to restore the streak (Rate limit: 10/minute)"""
    result = await service.recover_streak(user_id)
    return StreakRecoveryResponse(**result)


@router.post("/streak/forfeit", response_model=StreakResolutionResponse)
@limiter.limit("10/minute")
async def forfeit_streak(
    request: Request,
    user_id: str,
    service: StudyService = Depends(get_study_service)
):
    """Give up the streak instead of paying (Rate limit: 10/minute)"""
    return StreakResolutionResponse(**await service.forfeit_streak(user_id))


@router.post("/streak/acknowledge-loss", response_model=StreakResolutionResponse)
@limiter.limit("10/minute")
async def acknowledge_streak_loss(
    request: Request,
    user_id: str,
    service: StudyService = Depends(get_study_service)
):
    """Acknowledge a lost streak (Rate limit: 10/minute)"""
    return StreakResolutionResponse(**await service.acknowledge_streak_loss(user_id))


@router.post("/streak/freezes/purchase", response_model=StreakFreezePurchaseResponse)
@limiter.limit("10/minute")
async def purchase_streak_freeze(
    request: Request,
    user_id: str,
    service: StudyService = Depends(get_study_service)
):
    """Buy a streak freeze with crystals (Rate limit: 10/minute)"""
    return StreakFreezePurchaseResponse(**await service.purchase_streak_freeze(user_id))


# ==========================================
# Crystals and achievements
# ==========================================

@router.get("/crystals", response_model=CrystalSummary)
@limiter.limit("60/minute")
async def get_crystals(
    request: Request,
    user_id: str,
    service: StudyService = Depends(get_study_service)
):
    """Crystal balance and streak freeze prices (Rate limit: 60/minute)"""
    return await service.get_crystal_summary(user_id)


@router.post("/crystals/grant", response_model=CrystalGrantResponse)
@limiter.limit("30/minute")
async def grant_crystals(
    request: Request,
    user_id: str,
    payload: CrystalGrantRequest,
    service: StudyService = Depends(get_study_service)
):
    """Inbound crystal-earning event (Rate limit: 30/minute)"""
    result = await service.grant_crystals(
        user_id,
        payload.amount,
        payload.source,
        source_id=payload.source_id,
        description=payload.description,
    )
    return CrystalGrantResponse(**result)


@router.get("/achievements", response_model=AchievementListResponse)
@limiter.limit("30/minute")
async def get_achievements(
    request: Request,
    user_id: str,
    service: StudyService = Depends(get_study_service)
):
    """Unlocked achievements (Rate limit: 30/minute)"""
    result = await service.get_achievements(user_id)
    return AchievementListResponse(user_id=user_id, **result)


# ==========================================
# Final Challenge
# ==========================================

@router.post("/seasons/{season_id}/final-challenge/start", response_model=ChallengeStart)
@limiter.limit("10/minute")
async def start_final_challenge(
    request: Request,
    user_id: str,
    season_id: int,
    service: StudyService = Depends(get_study_service)
):
    """Start a timed Final Challenge attempt (Rate limit: 10/minute)"""
    return await service.start_final_challenge(user_id, season_id)


@router.post("/seasons/{season_id}/final-challenge/answer", response_model=ChallengeAnswerResponse)
@limiter.limit("120/minute")
async def record_challenge_answer(
    request: Request,
    user_id: str,
    season_id: int,
    payload: ChallengeAnswerRequest,
    service: StudyService = Depends(get_study_service)
):
    """Record one answer while the clock runs (Rate limit: 120/minute)"""
    result = await service.record_challenge_answer(
        user_id, season_id, payload.token, payload.question_id, payload.answer_index
    )
    return ChallengeAnswerResponse(**result)


@router.post("/seasons/{season_id}/final-challenge/submit", response_model=ChallengeResult)
@limiter.limit("10/minute")
async def submit_final_challenge(
    request: Request,
    user_id: str,
    season_id: int,
    payload: ChallengeSubmitRequest,
    service: StudyService = Depends(get_study_service)
):
    """Score the attempt once (Rate limit: 10/minute)"""
    return await service.submit_final_challenge(user_id, season_id, payload.token, payload.answers)


# ==========================================
# Health
# ==========================================

@health_router.get("/health", response_model=HealthCheckResponse)
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Health check endpoint (Rate limit: 60/minute for monitoring systems)"""
    try:
        async with db.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT 1")
                await cur.fetchone()

        db_status = "connected"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        db_status = "disconnected"

    return HealthCheckResponse(
        status="healthy" if db_status == "connected" else "degraded",
        database=db_status,
        timestamp=datetime.now(timezone.utc)
    )
