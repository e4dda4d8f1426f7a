"""Pydantic models for API request/response validation"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field
from datetime import datetime

from deoglory.models.achievement import UserAchievement


class StageProgressRequest(BaseModel):
    """Sub-progress inside the current stage"""
    completed_units: int = Field(..., ge=0, description="Units finished so far in this stage")


class StageCompletionRequest(BaseModel):
    """Optional body of a stage completion"""
    perfect: bool = Field(default=False, description="Lesson finished without mistakes (last stage only)")


class StageCompletionResponse(BaseModel):
    """Outcome of a stage completion"""
    lesson_id: int
    stage: str
    next_stage: Optional[str] = None
    lesson_completed: bool
    xp_awarded: int
    crystals_awarded: int = 0
    crystal_rewards: List[Dict[str, Any]] = Field(default_factory=list)
    leveled_up: bool
    new_level: int
    current_streak: int
    streak_message: str
    milestones: List[Dict[str, int]] = Field(default_factory=list)
    achievements_unlocked: List[Dict[str, Any]] = Field(default_factory=list)
    achievement_rewards: Optional[Dict[str, Any]] = None


class StageProgressResponse(BaseModel):
    lesson_id: int
    stage: str
    completed_units: int
    total_units: int


class StreakRecoveryResponse(BaseModel):
    """Result of paying crystals for a streak"""
    crystals_spent: int
    crystals_remaining: int
    current_streak: int
    achievements_unlocked: List[Dict[str, Any]] = Field(default_factory=list)


class StreakResolutionResponse(BaseModel):
    """Result of forfeiting or acknowledging a loss"""
    old_streak: int
    current_streak: int


class StreakFreezePurchaseResponse(BaseModel):
    """Result of buying a streak freeze"""
    crystals_spent: int
    crystals_remaining: int
    freezes_available: int
    next_freeze_cost: Optional[int] = None


class CrystalGrantRequest(BaseModel):
    """Inbound crystal-earning event"""
    amount: int = Field(..., gt=0, description="Crystals to add")
    source: str = Field(..., min_length=1, max_length=50, description="Earning source, e.g. weekly_goal")
    source_id: Optional[str] = Field(default=None, description="Identifier of the earning event")
    description: Optional[str] = None


class CrystalGrantResponse(BaseModel):
    crystals_granted: int
    crystals: int


class AchievementListResponse(BaseModel):
    """Member's unlocked achievements"""
    user_id: str
    unlocked: List[UserAchievement]
    total_unlocked: int
    total_achievements: int


class ChallengeAnswerRequest(BaseModel):
    """One answer recorded while the attempt clock runs"""
    token: str = Field(..., description="Continuation token returned by start")
    question_id: str
    answer_index: int = Field(..., ge=0)


class ChallengeAnswerResponse(BaseModel):
    attempt_id: str
    question_id: str
    answers_recorded: int
    question_count: int
    state: str


class ChallengeSubmitRequest(BaseModel):
    """Final submission; answers are option indexes in question order"""
    token: str = Field(..., description="Continuation token returned by start")
    answers: Optional[List[Optional[int]]] = Field(
        default=None,
        description="Answers in question order; omitted entries fall back to recorded answers"
    )


class HealthCheckResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    database: str = Field(..., description="Database connection status")
    timestamp: datetime = Field(..., description="Check timestamp")


class ErrorResponse(BaseModel):
    """Error body returned for engine errors"""
    error: str = Field(..., description="Exception class name")
    message: str
    user_message: str
    request_id: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str
