"""
Final Challenge Engine

Timed, fixed-question mastery quiz unlocked once every lesson of a season
is completed.

Lifecycle: ready -> playing -> (reviewing) -> finished

The time limit is enforced from the stored started_at/expires_at, never
from client-reported elapsed time. A late or abandoned attempt still
scores: answers not recorded before the deadline count as wrong (-1).
"""

from typing import Dict, Any, Optional
from datetime import datetime, timedelta
from uuid import uuid4
import hashlib
import json
import logging
import random

from jose import JWTError, jwt

from deoglory import config
from deoglory.exceptions import (
    AttemptAlreadyScored,
    AttemptExpiredOrMissing,
    ConfigurationError,
    ValidationError,
)
from deoglory.models.challenge import ChallengeAttempt, ChallengeResult
from deoglory.models.content import FinalChallenge, PublicQuestion, Question
from deoglory.models.progress import SeasonProgress

logger = logging.getLogger(__name__)

UNANSWERED = -1


def freeze_questions(challenge: FinalChallenge, rng: Optional[random.Random] = None) -> list[Question]:
    """Pick the immutable question set for one attempt"""
    pool = list(challenge.questions)
    if len(pool) <= challenge.question_count:
        return pool
    rng = rng or random.SystemRandom()
    return rng.sample(pool, challenge.question_count)


def question_set_hash(questions: list[Question]) -> str:
    """SHA-256 over question ids and answer keys, in attempt order"""
    payload = json.dumps(
        [[q.id, q.correct_index] for q in questions],
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def public_questions(questions: list[Question]) -> list[PublicQuestion]:
    return [PublicQuestion(id=q.id, prompt=q.prompt, options=q.options) for q in questions]


def new_attempt(
    user_id: str,
    challenge: FinalChallenge,
    questions: list[Question],
    now: datetime,
) -> ChallengeAttempt:
    return ChallengeAttempt(
        id=str(uuid4()),
        user_id=user_id,
        season_id=challenge.season_id,
        challenge_id=challenge.id,
        questions=questions,
        question_set_hash=question_set_hash(questions),
        started_at=now,
        expires_at=now + timedelta(seconds=challenge.time_limit_seconds),
    )


def _secret() -> str:
    if not config.CHALLENGE_TOKEN_SECRET:
        raise ConfigurationError("CHALLENGE_TOKEN_SECRET is not set", config_key="CHALLENGE_TOKEN_SECRET")
    return config.CHALLENGE_TOKEN_SECRET


def issue_token(attempt: ChallengeAttempt) -> str:
    """Opaque continuation token binding member, season, start time and question set"""
    claims = {
        "sub": attempt.user_id,
        "sid": attempt.season_id,
        "aid": attempt.id,
        "iat": int(attempt.started_at.timestamp()),
        "qsh": attempt.question_set_hash,
    }
    return jwt.encode(claims, _secret(), algorithm=config.CHALLENGE_TOKEN_ALGORITHM)


def decode_token(token: str, user_id: str, season_id: int) -> Dict[str, Any]:
    """Verify signature and the member/season binding; returns the claims"""
    try:
        claims = jwt.decode(token, _secret(), algorithms=[config.CHALLENGE_TOKEN_ALGORITHM])
    except JWTError as e:
        raise AttemptExpiredOrMissing(
            f"Invalid challenge token: {e}",
            user_id=user_id,
            operation="decode_challenge_token",
        )

    if claims.get("sub") != user_id or claims.get("sid") != season_id or not claims.get("aid"):
        raise AttemptExpiredOrMissing(
            "Challenge token does not belong to this member or season",
            user_id=user_id,
            operation="decode_challenge_token",
        )
    return claims


def verify_attempt(attempt: Optional[ChallengeAttempt], claims: Dict[str, Any]) -> ChallengeAttempt:
    """Token must match the stored attempt; scored attempts are rejected"""
    if attempt is None:
        raise AttemptExpiredOrMissing(f"Attempt {claims.get('aid')} not found", operation="verify_attempt")

    if (
        attempt.user_id != claims.get("sub")
        or attempt.season_id != claims.get("sid")
        or attempt.question_set_hash != claims.get("qsh")
        or int(attempt.started_at.timestamp()) != claims.get("iat")
    ):
        raise AttemptExpiredOrMissing(
            f"Token does not match attempt {attempt.id}",
            user_id=attempt.user_id,
            operation="verify_attempt",
        )

    if attempt.is_scored:
        raise AttemptAlreadyScored(attempt_id=attempt.id, user_id=attempt.user_id, operation="submit_final_challenge")

    return attempt


def is_late(attempt: ChallengeAttempt, now: datetime) -> bool:
    """Past the time limit plus network grace"""
    return now > attempt.expires_at + timedelta(seconds=config.CHALLENGE_SUBMIT_GRACE_SECONDS)


def record_answer(
    attempt: ChallengeAttempt,
    question_id: str,
    answer_index: int,
    now: datetime,
) -> ChallengeAttempt:
    """Store one answer while the clock is running"""
    if attempt.is_scored:
        raise AttemptAlreadyScored(attempt_id=attempt.id, user_id=attempt.user_id, operation="record_answer")
    if is_late(attempt, now):
        raise AttemptExpiredOrMissing(
            f"Attempt {attempt.id} time limit exceeded",
            user_id=attempt.user_id,
            operation="record_answer",
        )
    if question_id not in attempt.question_ids:
        raise ValidationError(
            "Question is not part of this attempt",
            field="question_id",
            value=question_id,
            user_id=attempt.user_id,
        )
    question = attempt.questions[attempt.question_ids.index(question_id)]
    if not 0 <= answer_index < len(question.options):
        raise ValidationError(
            f"Answer must be an option index between 0 and {len(question.options) - 1}",
            field="answer_index",
            value=answer_index,
            user_id=attempt.user_id,
        )

    answers = dict(attempt.answers)
    answers[question_id] = answer_index
    return attempt.model_copy(update={"answers": answers})


def resolve_answers(
    attempt: ChallengeAttempt,
    submitted: Optional[list[int]],
    now: datetime,
) -> tuple[list[int], bool]:
    """
    Final answer list in question order

    On time, the submitted list wins over recorded answers. Late, the
    submitted list is ignored. Missing entries become UNANSWERED.

    Returns:
        (answers, was_late)
    """
    late = is_late(attempt, now)
    answers = []
    for index, question_id in enumerate(attempt.question_ids):
        value = attempt.answers.get(question_id, UNANSWERED)
        if not late and submitted is not None and index < len(submitted) and submitted[index] is not None:
            value = submitted[index]
        answers.append(value)
    return answers, late


def score_answers(
    questions: list[Question],
    answers: list[int],
    xp_reward: int,
    perfect_xp_bonus: int,
    mastery_threshold: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Score an answer list against the frozen question set

    Returns:
        {
            'correct_count': int,
            'question_count': int,
            'score': float,  # 0..100
            'is_perfect': bool,
            'is_mastered': bool,
            'xp_earned': int
        }
    """
    threshold = config.MASTERY_THRESHOLD if mastery_threshold is None else mastery_threshold
    count = len(questions)
    correct = sum(
        1 for question, answer in zip(questions, answers)
        if answer == question.correct_index
    )

    if count == 0:
        score = 0.0
    else:
        score = round(correct * 100 / count, 2)
    is_perfect = count > 0 and correct == count

    return {
        "correct_count": correct,
        "question_count": count,
        "score": score,
        "is_perfect": is_perfect,
        # Integer comparison keeps 4/5 at exactly 80%
        "is_mastered": count > 0 and correct * 100 >= threshold * count,
        "xp_earned": xp_reward + (perfect_xp_bonus if is_perfect else 0),
    }


def xp_to_credit(
    challenge: FinalChallenge,
    outcome: Dict[str, Any],
    season_progress: Optional[SeasonProgress],
) -> int:
    """
    XP actually credited for this attempt

    The base reward is credited on the first scored attempt of a season,
    the perfect bonus on the first perfect one. Replays credit nothing twice.
    """
    credit = 0
    if season_progress is None or not season_progress.final_challenge_completed:
        credit += challenge.xp_reward
    if outcome["is_perfect"] and not (season_progress and season_progress.final_challenge_perfect):
        credit += challenge.perfect_xp_bonus
    return credit


def finalize_attempt(
    attempt: ChallengeAttempt,
    challenge: FinalChallenge,
    submitted: Optional[list[int]],
    season_progress: Optional[SeasonProgress],
    now: datetime,
) -> tuple[ChallengeAttempt, ChallengeResult, SeasonProgress]:
    """Score once and derive the updated attempt, result and season outcome"""
    if attempt.is_scored:
        raise AttemptAlreadyScored(attempt_id=attempt.id, user_id=attempt.user_id, operation="finalize_attempt")

    ordered = attempt.questions
    if question_set_hash(ordered) != attempt.question_set_hash:
        raise AttemptExpiredOrMissing(
            f"Question set of attempt {attempt.id} was tampered with",
            user_id=attempt.user_id,
            operation="finalize_attempt",
        )

    answers, late = resolve_answers(attempt, submitted, now)
    outcome = score_answers(ordered, answers, challenge.xp_reward, challenge.perfect_xp_bonus)
    credit = xp_to_credit(challenge, outcome, season_progress)

    scored = attempt.model_copy(update={
        "answers": {qid: answer for qid, answer in zip(attempt.question_ids, answers)},
        "scored_at": now,
        "correct_count": outcome["correct_count"],
        "score": outcome["score"],
        "is_perfect": outcome["is_perfect"],
        "is_mastered": outcome["is_mastered"],
        "xp_earned": outcome["xp_earned"],
        "xp_awarded": credit,
    })

    previous = season_progress or SeasonProgress(user_id=attempt.user_id, season_id=attempt.season_id)
    updated_progress = previous.model_copy(update={
        "final_challenge_completed": True,
        "final_challenge_perfect": previous.final_challenge_perfect or outcome["is_perfect"],
        "is_mastered": previous.is_mastered or outcome["is_mastered"],
        "best_score": max(previous.best_score, outcome["score"]),
    })

    result = ChallengeResult(
        attempt_id=attempt.id,
        season_id=attempt.season_id,
        correct_count=outcome["correct_count"],
        question_count=outcome["question_count"],
        score=outcome["score"],
        is_perfect=outcome["is_perfect"],
        is_mastered=outcome["is_mastered"],
        xp_earned=outcome["xp_earned"],
        xp_awarded=credit,
        answers=answers,
        was_late=late,
    )

    logger.info(
        f"User {attempt.user_id} scored {outcome['score']}% on season {attempt.season_id} "
        f"final challenge ({outcome['correct_count']}/{outcome['question_count']}"
        f"{', late' if late else ''})"
    )
    return scored, result, updated_progress
