"""
Prometheus metrics for the study progression engine.

Organized by category:
- HTTP/API metrics: Request counts, latency
- Progression metrics: stage completions, XP, streak events, crystals, challenges
- Error metrics

Metrics are exposed at the /metrics endpoint for Prometheus scraping.
"""

import logging
import os
import sys
from prometheus_client import Counter, Gauge, Histogram, Info

logger = logging.getLogger(__name__)

# =============================================================================
# HTTP/API Metrics
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests received",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0],
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently being processed",
    ["method", "endpoint"],
)

# =============================================================================
# Progression Metrics
# =============================================================================

stage_completions_total = Counter(
    "study_stage_completions_total",
    "Lesson stages completed",
    ["stage"],  # estude/medite/responda
)

xp_awarded_total = Counter(
    "study_xp_awarded_total",
    "XP credited to members",
    ["source"],  # lesson/final_challenge/achievement/streak_milestone
)

streak_events_total = Counter(
    "study_streak_events_total",
    "Streak transitions",
    ["event"],  # opened/refreshed/lost/expired/cleared/frozen/recovered/forfeited/acknowledged
)

crystals_spent_total = Counter(
    "study_crystals_spent_total",
    "Crystals debited from members",
    ["purpose"],  # streak_recovery/freeze_purchase
)

crystals_earned_total = Counter(
    "study_crystals_earned_total",
    "Crystals credited to members",
    ["source"],
)

final_challenge_total = Counter(
    "study_final_challenge_total",
    "Final Challenge attempts by outcome",
    ["outcome"],  # started/mastered/not_mastered/perfect
)

achievements_unlocked_total = Counter(
    "study_achievements_unlocked_total",
    "Achievements unlocked",
    ["category"],
)

# =============================================================================
# Error Metrics
# =============================================================================

errors_total = Counter(
    "errors_total",
    "Total engine errors by type",
    ["error_type"],
)

# =============================================================================
# Application Info
# =============================================================================

app_info = Info(
    "app_info",
    "Application information",
)


def init_metrics():
    """
    Initialize metrics with application information.

    Called once at application startup.
    """
    from deoglory.config import SENTRY_ENVIRONMENT

    app_info.info(
        {
            "version": os.getenv("GIT_COMMIT_SHA", "dev")[:7],
            "environment": SENTRY_ENVIRONMENT,
            "python_version": f"{sys.version_info.major}.{sys.version_info.minor}",
        }
    )

    logger.info("Prometheus metrics initialized")


def challenge_outcome(is_mastered: bool) -> str:
    return "mastered" if is_mastered else "not_mastered"
