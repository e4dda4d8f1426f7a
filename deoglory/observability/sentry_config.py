"""Sentry configuration and initialization for error tracking."""

import logging
import os
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)


def init_sentry() -> bool:
    """
    Initialize Sentry SDK for error tracking and performance monitoring.

    Environment variables:
        ENABLE_SENTRY: Feature flag
        SENTRY_DSN: Sentry project DSN
        SENTRY_ENVIRONMENT: development, staging, production
        SENTRY_TRACES_SAMPLE_RATE: Fraction of transactions to sample
        GIT_COMMIT_SHA: Release tag (optional)

    Returns:
        True when Sentry was initialized
    """
    from deoglory.config import (
        SENTRY_DSN,
        SENTRY_ENVIRONMENT,
        SENTRY_TRACES_SAMPLE_RATE,
        ENABLE_SENTRY,
    )

    if not ENABLE_SENTRY:
        logger.info("Sentry is disabled (ENABLE_SENTRY=false)")
        return False

    if not SENTRY_DSN:
        logger.warning("Sentry DSN not configured - error tracking disabled")
        return False

    release = os.getenv("GIT_COMMIT_SHA")
    release = f"deoglory-study@{release[:7]}" if release else "deoglory-study@dev"

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=SENTRY_ENVIRONMENT,
        release=release,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
        attach_stacktrace=True,
        send_default_pii=False,
        before_send=_before_send,
    )

    logger.info(
        f"Sentry initialized: environment={SENTRY_ENVIRONMENT}, "
        f"release={release}, traces_sample_rate={SENTRY_TRACES_SAMPLE_RATE}"
    )
    return True


def _before_send(event, hint):
    """
    Drop 4xx engine errors and HTTP exceptions; report server-side failures only
    """
    if "exc_info" in hint:
        from deoglory.exceptions import DeoGloryError

        exc_type, exc_value, tb = hint["exc_info"]
        if isinstance(exc_value, DeoGloryError) and exc_value.http_status < 500:
            return None
        if exc_type.__name__ == "HTTPException":
            if getattr(exc_value, "status_code", 500) < 500:
                return None

    return event


def shutdown_sentry() -> None:
    """Flush pending events before shutdown"""
    client = sentry_sdk.get_client()
    if client.is_active():
        logger.info("Flushing Sentry events before shutdown...")
        client.close(timeout=2.0)
        logger.info("Sentry shutdown complete")
