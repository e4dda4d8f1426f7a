"""
Daily Streak Tracking and Recovery Economy

States on each login/activity check:
- normal: activity today or yesterday
- at_risk: exactly one day missed
- recoverable: 2-4 days missed, crystals can pay for recovery
- lost: 5+ days missed, streak forfeited, no payment offered

Features:
- Crystal-priced recovery on a strictly increasing schedule
- Grace window after which an open recovery auto-forfeits
- One-time streak milestone rewards
- Streak freezes bought with crystals, spent automatically on missed days
"""

from typing import Dict, Any, Optional
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from deoglory import config
from deoglory.exceptions import InsufficientCrystals, StreakFreezeLimitReached
from deoglory.models.profile import (
    StreakRecoveryRequest,
    StreakState,
    StreakStatus,
    StudyProfile,
)

logger = logging.getLogger(__name__)

# streak days -> (crystal reward, xp reward)
STREAK_MILESTONES: Dict[int, tuple[int, int]] = {
    7: (5, 50),
    14: (10, 100),
    30: (20, 200),
    60: (30, 300),
    100: (50, 500),
    180: (75, 750),
    365: (150, 1500),
}


def zone_for(tz_name: str) -> ZoneInfo:
    """Member timezone, falling back to the configured default"""
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.error(f"Invalid timezone '{tz_name}': {e}")
        return ZoneInfo(config.DEFAULT_TIMEZONE)


def local_date(now: datetime, tz_name: str) -> date:
    """Calendar day of `now` in the member's timezone"""
    return now.astimezone(zone_for(tz_name)).date()


def days_missed(last_activity_date: Optional[date], today: date) -> int:
    """Full calendar days without activity between the last activity and today"""
    if last_activity_date is None:
        return 0
    return max(0, (today - last_activity_date).days - 1)


def classify_streak(missed: int, loss_days: Optional[int] = None) -> StreakState:
    loss_days = loss_days or config.STREAK_LOSS_DAYS
    if missed <= 0:
        return StreakState.NORMAL
    if missed >= loss_days:
        return StreakState.LOST
    if missed == 1:
        return StreakState.AT_RISK
    return StreakState.RECOVERABLE


def recovery_cost(missed: int, costs: Optional[list[int]] = None) -> int:
    """Crystal cost for recovering after `missed` days (1-based, strictly increasing)"""
    costs = costs or config.STREAK_RECOVERY_COSTS
    if missed <= 0:
        return 0
    index = min(missed, len(costs)) - 1
    return costs[index]


def build_status(
    profile: StudyProfile,
    request: Optional[StreakRecoveryRequest],
) -> StreakStatus:
    """Prompt payload for the renderer"""
    if request is None:
        return StreakStatus(
            state=StreakState.NORMAL,
            needs_recovery=False,
            streak_at_risk=0,
            days_missed=0,
            crystal_cost=0,
            crystals_available=profile.crystals,
            can_recover=False,
            streak_lost=False,
            current_streak=profile.current_streak,
            freezes_available=profile.streak_freezes_available,
        )

    if request.streak_lost:
        state = StreakState.LOST
    else:
        state = classify_streak(request.days_missed)

    return StreakStatus(
        state=state,
        needs_recovery=True,
        streak_at_risk=request.streak_at_risk,
        days_missed=request.days_missed,
        crystal_cost=request.crystal_cost,
        crystals_available=profile.crystals,
        can_recover=not request.streak_lost and profile.crystals >= request.crystal_cost,
        streak_lost=request.streak_lost,
        current_streak=profile.current_streak,
        freezes_available=profile.streak_freezes_available,
    )


def evaluate_streak(
    profile: StudyProfile,
    today: date,
    pending: Optional[StreakRecoveryRequest],
    now: datetime,
) -> Dict[str, Any]:
    """
    Decide the streak transition for a login/activity check

    Held freezes cover missed days first, and only while no recovery
    request is open. Mutates `profile` when freezes are spent or the
    streak is lost. Returns:
        {
            'request': Optional[StreakRecoveryRequest],  # what should be stored
            'status': StreakStatus,
            'event': Optional[str],  # opened/refreshed/lost/expired/cleared
            'freezes_used': int
        }
    """
    frozen = apply_freezes(profile, today) if pending is None else 0
    check = _check_streak(profile, today, pending, now)
    check["freezes_used"] = frozen
    if frozen:
        check["status"] = check["status"].model_copy(update={"freezes_used": frozen})
    return check


def _check_streak(
    profile: StudyProfile,
    today: date,
    pending: Optional[StreakRecoveryRequest],
    now: datetime,
) -> Dict[str, Any]:
    if pending is not None and pending.streak_lost:
        # Loss already applied, waiting for acknowledgement
        return {"request": pending, "status": build_status(profile, pending), "event": None}

    missed = days_missed(profile.last_activity_date, today)
    state = classify_streak(missed)

    if state == StreakState.NORMAL or profile.current_streak == 0:
        event = "cleared" if pending is not None else None
        return {"request": None, "status": build_status(profile, None), "event": event}

    if state == StreakState.LOST:
        lost = _lose_streak(profile, missed, now)
        logger.info(
            f"User {profile.user_id} lost a {lost.streak_at_risk}-day streak after {missed} missed days"
        )
        return {"request": lost, "status": build_status(profile, lost), "event": "lost"}

    if pending is not None and pending.expires_at <= now:
        lost = _lose_streak(profile, missed, now)
        logger.info(
            f"User {profile.user_id} recovery window expired, {lost.streak_at_risk}-day streak forfeited"
        )
        return {"request": lost, "status": build_status(profile, lost), "event": "expired"}

    cost = recovery_cost(missed)
    if pending is None:
        request = StreakRecoveryRequest(
            user_id=profile.user_id,
            days_missed=missed,
            crystal_cost=cost,
            streak_at_risk=profile.current_streak,
            opened_at=now,
            expires_at=now + timedelta(hours=config.STREAK_RECOVERY_GRACE_HOURS),
        )
        event = "opened"
        logger.info(
            f"User {profile.user_id} streak {state.value}: {missed} days missed, "
            f"recovery costs {cost} crystals"
        )
    else:
        request = pending.model_copy(update={"days_missed": missed, "crystal_cost": cost})
        event = "refreshed" if missed != pending.days_missed else None

    return {"request": request, "status": build_status(profile, request), "event": event}


def _lose_streak(profile: StudyProfile, missed: int, now: datetime) -> StreakRecoveryRequest:
    at_risk = profile.current_streak
    profile.current_streak = 0
    return StreakRecoveryRequest(
        user_id=profile.user_id,
        days_missed=missed,
        crystal_cost=0,
        streak_at_risk=at_risk,
        streak_lost=True,
        opened_at=now,
        expires_at=now,
    )


def tick_activity(profile: StudyProfile, today: date) -> Dict[str, Any]:
    """
    Daily-activity tick; the only way a streak grows

    Logic:
    - Same day: already counted, no change
    - Next day: streak + 1
    - First activity or any gap: streak restarts at 1
    """
    old_streak = profile.current_streak
    last = profile.last_activity_date

    if last == today:
        message = f"Streak continues! Day {profile.current_streak}"
    elif last is not None and last == today - timedelta(days=1):
        profile.current_streak += 1
        message = f"Streak continues! Day {profile.current_streak}"
    else:
        profile.current_streak = 1
        message = "Streak started! Day 1"

    if last is None or last < today:
        profile.last_activity_date = today

    if profile.current_streak > profile.longest_streak:
        profile.longest_streak = profile.current_streak

    if profile.current_streak != old_streak:
        logger.info(f"Updated streak for user {profile.user_id}: {old_streak} → {profile.current_streak} days")

    return {
        "old_streak": old_streak,
        "current_streak": profile.current_streak,
        "longest_streak": profile.longest_streak,
        "incremented": profile.current_streak > old_streak,
        "message": message,
    }


def apply_recovery(profile: StudyProfile, request: StreakRecoveryRequest, today: date) -> Dict[str, Any]:
    """
    Pay crystals to restore the pre-risk streak

    Restores, never adds: the streak ends where it was before the missed days.
    """
    if profile.crystals < request.crystal_cost:
        raise InsufficientCrystals(
            f"Recovery costs {request.crystal_cost} crystals, {profile.crystals} available",
            required=request.crystal_cost,
            available=profile.crystals,
            user_id=profile.user_id,
            operation="recover_streak",
        )

    profile.crystals -= request.crystal_cost
    profile.current_streak = request.streak_at_risk
    profile.last_activity_date = today

    logger.info(
        f"User {profile.user_id} recovered a {request.streak_at_risk}-day streak "
        f"for {request.crystal_cost} crystals ({profile.crystals} left)"
    )

    return {
        "crystals_spent": request.crystal_cost,
        "crystals_remaining": profile.crystals,
        "current_streak": profile.current_streak,
    }


def apply_forfeit(profile: StudyProfile) -> Dict[str, Any]:
    """Give up the streak; same numeric effect for forfeit and acknowledged loss"""
    old_streak = profile.current_streak
    profile.current_streak = 0
    return {"old_streak": old_streak, "current_streak": 0}


def next_freeze_cost(held: int, costs: Optional[list[int]] = None) -> Optional[int]:
    """Price of one more freeze, or None at the holding limit"""
    costs = costs or config.STREAK_FREEZE_COSTS
    if held >= len(costs):
        return None
    return costs[held]


def buy_freeze(profile: StudyProfile) -> Dict[str, Any]:
    """
    Spend crystals on one streak freeze

    Raises:
        StreakFreezeLimitReached: already holding the maximum
        InsufficientCrystals: balance below the freeze price
    """
    cost = next_freeze_cost(profile.streak_freezes_available)
    if cost is None:
        raise StreakFreezeLimitReached(
            f"User {profile.user_id} already holds {profile.streak_freezes_available} freezes",
            held=profile.streak_freezes_available,
            user_id=profile.user_id,
            operation="purchase_streak_freeze",
        )
    if profile.crystals < cost:
        raise InsufficientCrystals(
            f"Streak freeze costs {cost} crystals, {profile.crystals} available",
            required=cost,
            available=profile.crystals,
            user_id=profile.user_id,
            operation="purchase_streak_freeze",
        )

    profile.crystals -= cost
    profile.streak_freezes_available += 1
    logger.info(f"User {profile.user_id} bought a streak freeze for {cost} crystals")

    return {
        "crystals_spent": cost,
        "crystals_remaining": profile.crystals,
        "freezes_available": profile.streak_freezes_available,
        "next_freeze_cost": next_freeze_cost(profile.streak_freezes_available),
    }


def apply_freezes(profile: StudyProfile, today: date) -> int:
    """
    Spend held freezes on missed days

    Each freeze covers one missed day: the last activity date moves
    forward, so the streak survives without growing. Freezes are kept
    when they could not stop the streak from being lost.

    Returns:
        Number of freezes spent
    """
    missed = days_missed(profile.last_activity_date, today)
    held = profile.streak_freezes_available
    if missed <= 0 or held == 0 or profile.current_streak == 0:
        return 0

    used = min(missed, held)
    if missed - used >= config.STREAK_LOSS_DAYS:
        return 0

    profile.streak_freezes_available -= used
    profile.total_streak_freeze_used += used
    profile.last_activity_date = profile.last_activity_date + timedelta(days=used)

    logger.info(
        f"User {profile.user_id} spent {used} streak freeze(s) on {missed} missed days "
        f"({profile.current_streak}-day streak)"
    )
    return used


def milestones_reached(streak: int, already_awarded: set[int]) -> list[Dict[str, int]]:
    """Milestones at or below `streak` not yet granted to this member"""
    reached = []
    for days, (crystals, xp) in sorted(STREAK_MILESTONES.items()):
        if days <= streak and days not in already_awarded:
            reached.append({"days": days, "crystals": crystals, "xp": xp})
    return reached
