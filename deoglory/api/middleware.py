"""API middleware for rate limiting and CORS"""
import logging
from fastapi import Request
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi.middleware.cors import CORSMiddleware

from deoglory.config import CORS_ORIGINS, RATE_LIMIT_DEFAULT

logger = logging.getLogger(__name__)


def member_rate_key(request: Request) -> str:
    """Rate limit bucket: the member in the path, else the client address"""
    user_id = request.path_params.get("user_id")
    if user_id:
        return f"member:{user_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=member_rate_key, default_limits=[RATE_LIMIT_DEFAULT])


def setup_cors(app):
    """Allow browser origins from CORS_ORIGINS; none configured means no CORS"""
    if not CORS_ORIGINS:
        logger.info("CORS disabled: no CORS_ORIGINS configured")
        return

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type"],
    )
    logger.info(f"CORS configured for origins: {CORS_ORIGINS}")


def setup_rate_limiting(app):
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    logger.info(f"Rate limiting configured: {RATE_LIMIT_DEFAULT} per member by default")
