"""
Standardized exception hierarchy for the study progression engine
Provides rich context, consistent logging, and user-friendly error messages
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)


class DeoGloryError(Exception):
    """
    Base exception for all engine errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - User-friendly messages
    - Structured context
    - Automatic logging

    Example:
        raise DeoGloryError(
            message="Failed to save study profile",
            user_id="123456",
            operation="complete_stage",
            context={"lesson_id": 42}
        )
    """

    http_status: int = 500
    log_level: int = logging.ERROR

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.request_id = request_id or str(uuid4())
        self.operation = operation
        self.context = context or {}
        self.cause = cause
        self.user_message = user_message or "An error occurred. Please try again."
        self.timestamp = datetime.now(timezone.utc)

        # Auto-log on creation
        self._log_error()

    def _log_error(self) -> None:
        """Log error with full context"""
        log_data = {
            "error_type": self.__class__.__name__,
            "error_message": self.message,  # Avoid conflict with logging's 'message' field
            "request_id": self.request_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "error_context": self.context,
            "timestamp": self.timestamp.isoformat()
        }

        if self.cause:
            log_data["cause"] = str(self.cause)
            logger.log(self.log_level, f"{self.__class__.__name__}: {self.message}", extra=log_data, exc_info=self.cause)
        else:
            logger.log(self.log_level, f"{self.__class__.__name__}: {self.message}", extra=log_data)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for API responses"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "details": self.context,
            "timestamp": self.timestamp.isoformat()
        }


# ==========================================
# Validation Errors (Caller Input)
# ==========================================

class ValidationError(DeoGloryError):
    """
    Raised when caller input fails validation

    Example:
        raise ValidationError(
            message="Amount must be positive",
            field="amount",
            value=-5,
            user_id="123456"
        )
    """

    http_status = 400
    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        self.field = field
        self.value = value
        super().__init__(
            message=message,
            user_message=f"Invalid {field}: {message}" if field else message,
            context={"field": field, "value": value},
            **kwargs
        )


# ==========================================
# Database Errors
# ==========================================

class DatabaseError(DeoGloryError):
    """
    Base class for database-related errors
    """
    pass


class ConnectionError(DatabaseError):
    """Database connection failed"""

    http_status = 503

    def __init__(self, message: str = "Database connection failed", **kwargs):
        super().__init__(
            message=message,
            user_message="We're having trouble connecting to the database. Please try again in a moment.",
            **kwargs
        )


class QueryError(DatabaseError):
    """Database query execution failed"""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        **kwargs
    ):
        self.query = query
        super().__init__(
            message=message,
            user_message="We encountered an issue saving your progress. Please try again.",
            context={"query": query},
            **kwargs
        )


class RecordNotFoundError(DatabaseError):
    """Requested database record does not exist"""

    http_status = 404
    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[Any] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(
            message=message,
            user_message=f"{record_type or 'Record'} not found.",
            context={"record_type": record_type, "record_id": record_id},
            **kwargs
        )


class ConcurrentUpdateError(DatabaseError):
    """Profile row changed between read and write; the whole request may be retried"""

    http_status = 409
    log_level = logging.WARNING

    def __init__(self, message: str = "Study profile was modified concurrently", **kwargs):
        super().__init__(
            message=message,
            user_message="Your progress changed on another device. Please try again.",
            **kwargs
        )


# ==========================================
# Authentication
# ==========================================

class AuthenticationError(DeoGloryError):
    """Authentication failed"""

    http_status = 401
    log_level = logging.WARNING

    def __init__(
        self,
        message: str = "Authentication failed",
        **kwargs
    ):
        super().__init__(
            message=message,
            user_message="Authentication failed. Please check your credentials.",
            **kwargs
        )


# ==========================================
# Configuration Errors
# ==========================================

class ConfigurationError(DeoGloryError):
    """System configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        self.config_key = config_key
        super().__init__(
            message=message,
            user_message="The system is not properly configured. Please contact support.",
            context={"config_key": config_key},
            **kwargs
        )


# ==========================================
# Progression Errors (deterministic preconditions, never retried)
# ==========================================

class ProgressionError(DeoGloryError):
    """A progression rule rejected the request; no state was changed"""

    http_status = 409
    log_level = logging.WARNING


class InvalidStageTransition(ProgressionError):
    """Stage is not the member's current stage"""

    def __init__(
        self,
        message: str,
        lesson_id: Optional[int] = None,
        stage: Optional[str] = None,
        reason: Optional[str] = None,
        **kwargs
    ):
        self.lesson_id = lesson_id
        self.stage = stage
        self.reason = reason
        super().__init__(
            message=message,
            user_message="This step is not available yet. Finish the previous step first.",
            context={"lesson_id": lesson_id, "stage": stage, "reason": reason},
            **kwargs
        )


class InsufficientCrystals(ProgressionError):
    """Crystal spend (streak recovery, freeze purchase) above the balance"""

    def __init__(
        self,
        message: str = "Not enough crystals",
        required: Optional[int] = None,
        available: Optional[int] = None,
        **kwargs
    ):
        self.required = required
        self.available = available
        super().__init__(
            message=message,
            user_message="You don't have enough crystals for this.",
            context={"required": required, "available": available},
            **kwargs
        )


class NoRecoveryPending(ProgressionError):
    """Recovery, forfeit or acknowledgement requested with nothing to resolve"""

    def __init__(self, message: str = "No streak recovery is pending", **kwargs):
        super().__init__(
            message=message,
            user_message="Your streak is safe, there is nothing to recover.",
            **kwargs
        )


class StreakFreezeLimitReached(ProgressionError):
    """Freeze purchase while already holding the maximum"""

    def __init__(self, message: str = "Streak freeze limit reached", held: Optional[int] = None, **kwargs):
        self.held = held
        super().__init__(
            message=message,
            user_message="You already hold as many streak freezes as allowed.",
            context={"held": held},
            **kwargs
        )


class AttemptAlreadyScored(ProgressionError):
    """Final Challenge attempt was already scored"""

    def __init__(self, message: str = "Attempt already scored", attempt_id: Optional[str] = None, **kwargs):
        self.attempt_id = attempt_id
        super().__init__(
            message=message,
            user_message="This challenge was already submitted. Start a new one to play again.",
            context={"attempt_id": attempt_id},
            **kwargs
        )


class AttemptExpiredOrMissing(ProgressionError):
    """Continuation token is invalid, stale, or points to no attempt"""

    def __init__(self, message: str = "Attempt expired or missing", **kwargs):
        super().__init__(
            message=message,
            user_message="This challenge session is no longer valid. Please start again.",
            **kwargs
        )


class AttemptInProgress(ProgressionError):
    """An unexpired attempt already exists for this member and season"""

    def __init__(self, message: str = "Attempt already in progress", expires_at: Optional[datetime] = None, **kwargs):
        self.expires_at = expires_at
        super().__init__(
            message=message,
            user_message="You already have a challenge in progress.",
            context={"expires_at": expires_at.isoformat() if expires_at else None},
            **kwargs
        )


class SeasonNotYetCompleted(ProgressionError):
    """Final Challenge start blocked because season lessons remain"""

    def __init__(self, message: str = "Season not completed", season_id: Optional[int] = None, **kwargs):
        self.season_id = season_id
        super().__init__(
            message=message,
            user_message="Complete every lesson of this season to unlock the Final Challenge.",
            context={"season_id": season_id},
            **kwargs
        )


# ==========================================
# Helper Functions
# ==========================================

def wrap_external_exception(
    error: Exception,
    operation: str,
    user_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> DeoGloryError:
    """
    Wrap external exceptions (psycopg) into our exception hierarchy

    Example:
        try:
            await cur.execute(query)
        except psycopg.Error as e:
            raise wrap_external_exception(
                e,
                operation="update_study_profile",
                user_id="123456",
            )
    """
    import psycopg

    if isinstance(error, psycopg.OperationalError):
        return ConnectionError(
            message=f"Database connection failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, psycopg.Error):
        return QueryError(
            message=f"Database query failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            cause=error
        )

    return DeoGloryError(
        message=f"{operation} failed: {str(error)}",
        user_id=user_id,
        operation=operation,
        context=context,
        cause=error
    )
