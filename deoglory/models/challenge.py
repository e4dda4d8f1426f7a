"""Final Challenge attempt models"""
from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from deoglory.models.content import PublicQuestion, Question


class AttemptState(str, Enum):
    """Lifecycle of a Final Challenge attempt"""
    READY = "ready"
    PLAYING = "playing"
    REVIEWING = "reviewing"
    FINISHED = "finished"


class ChallengeAttempt(BaseModel):
    """One member's attempt; scored exactly once"""
    id: str
    user_id: str
    season_id: int
    challenge_id: int
    # Frozen at start, answer keys included; never sent to the member
    questions: list[Question]
    question_set_hash: str
    started_at: datetime
    expires_at: datetime
    # question id -> chosen option index
    answers: dict[str, int] = Field(default_factory=dict)
    scored_at: Optional[datetime] = None
    correct_count: int = 0
    score: float = 0.0
    is_perfect: bool = False
    is_mastered: bool = False
    xp_earned: int = 0
    xp_awarded: int = 0

    @property
    def question_ids(self) -> list[str]:
        return [q.id for q in self.questions]

    @property
    def is_scored(self) -> bool:
        return self.scored_at is not None

    @property
    def state(self) -> AttemptState:
        if self.is_scored:
            return AttemptState.FINISHED
        if self.answers and len(self.answers) >= len(self.question_ids):
            return AttemptState.REVIEWING
        return AttemptState.PLAYING


class ChallengeStart(BaseModel):
    """Returned by start: question set plus continuation token"""
    attempt_id: str
    token: str
    season_id: int
    title: str
    questions: list[PublicQuestion]
    time_limit_seconds: int
    started_at: datetime
    expires_at: datetime


class ChallengeResult(BaseModel):
    """Returned by submit"""
    attempt_id: str
    season_id: int
    correct_count: int
    question_count: int
    score: float
    is_perfect: bool
    is_mastered: bool
    xp_earned: int
    xp_awarded: int
    answers: list[int]
    was_late: bool = False
    leveled_up: bool = False
    new_level: int = 1
